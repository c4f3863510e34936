# src/refinery/verify/adapters/base.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Sequence

from refinery.repo.probe import Capabilities
from refinery.verify.report import ExecutionReport, TestResult
from refinery.verify.shell import CommandResult, CommandRunner

logger = logging.getLogger("refinery.verify.adapters")


@dataclass(frozen=True, slots=True)
class StageTimeouts:
    tool_s: float = 180.0
    test_s: float = 300.0


class ToolAdapter:
    """
    The superclass for all language adapters.

    An adapter maps probed capabilities onto concrete tool invocations for
    the four tool-driven stages (format, lint, typecheck, test) and writes
    normalised results into an :class:`ExecutionReport`.  It never raises
    for tool failures: a missing binary, a timeout or an unparseable exit
    becomes an entry in the stage's error list.
    """

    name = "base"
    langs: Sequence[str] = ()

    def __init__(self, timeouts: StageTimeouts | None = None):
        self.timeouts = timeouts or StageTimeouts()

    def applies(self, caps: Capabilities) -> bool:
        return any(lang in caps.langs for lang in self.langs)

    # --------------------------------------------------------------------- #
    # Stage hooks (override in subclasses)
    # --------------------------------------------------------------------- #
    def format(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport, *, write: bool = False) -> None:
        pass

    def lint(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        pass

    def typecheck(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        pass

    def test(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        pass

    # --------------------------------------------------------------------- #
    # Shared helpers
    # --------------------------------------------------------------------- #
    def _tool(
        self,
        runner: CommandRunner,
        tool: str,
        cmd: Sequence[str],
        parse: Callable[[str], List[str]],
        sink: List[str],
        report: ExecutionReport,
    ) -> CommandResult:
        """Run a diagnostic tool, parse its output into *sink*."""
        result = runner.run(cmd, timeout=self.timeouts.tool_s)
        report.append_log(f"$ {' '.join(result.cmd)}\n{result.output[-1000:]}")
        if result.missing or result.timed_out:
            sink.append(f"[{tool}] {result.describe_failure()}")
            return result
        found = parse(result.output)
        sink.extend(found)
        if not found and result.returncode != 0:
            # non-zero with nothing parseable: keep the failure visible
            sink.append(f"[{tool}] {result.describe_failure()}")
        logger.debug("%s: %d diagnostics", tool, len(found))
        return result

    def _tests(
        self,
        runner: CommandRunner,
        tool: str,
        cmd: Sequence[str],
        parse: Callable[[str, int], TestResult],
        report: ExecutionReport,
    ) -> None:
        result = runner.run(cmd, timeout=self.timeouts.test_s)
        report.append_log(f"$ {' '.join(result.cmd)}\n{result.output[-2000:]}")
        if result.missing or result.timed_out:
            outcome = TestResult(failed=1, details=[f"[{tool}] {result.describe_failure()}"])
        else:
            outcome = parse(result.output, result.returncode)
        _merge_tests(report.test, outcome)


def node_cmd(runner: CommandRunner, tool: str, *args: str) -> List[str]:
    """Prefer the repo-local binary, fall back to ``npx --no-install``."""
    local = runner.which(tool)
    if local:
        return [local, *args]
    return ["npx", "--no-install", tool, *args]


def _merge_tests(into: TestResult, other: TestResult) -> None:
    into.passed += other.passed
    into.failed += other.failed
    into.details.extend(other.details)
    if other.coverage_pct is not None:
        into.coverage_pct = other.coverage_pct
