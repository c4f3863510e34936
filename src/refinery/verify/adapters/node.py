# src/refinery/verify/adapters/node.py
from __future__ import annotations

from functools import partial

from refinery.repo.probe import Capabilities
from refinery.verify import parsers
from refinery.verify.report import ExecutionReport
from refinery.verify.shell import CommandRunner

from .base import ToolAdapter, node_cmd


class NodeAdapter(ToolAdapter):
    """prettier, eslint, tsc, jest / vitest / mocha."""

    name = "node"
    langs = ("typescript", "javascript")

    def format(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport, *, write: bool = False) -> None:
        if caps.has("formatters", "prettier"):
            flag = "--write" if write else "--check"
            self._tool(runner, "prettier", node_cmd(runner, "prettier", flag, "."),
                       partial(parsers.parse_format_check, "prettier"), report.format_errors, report)

    def lint(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        if caps.has("linters", "eslint"):
            self._tool(runner, "eslint", node_cmd(runner, "eslint", ".", "--format", "json"),
                       parsers.parse_eslint_json, report.lint_errors, report)

    def typecheck(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        if caps.has("typecheckers", "tsc"):
            self._tool(runner, "tsc", node_cmd(runner, "tsc", "--noEmit", "--pretty", "false"),
                       parsers.parse_tsc, report.type_errors, report)

    def test(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        # one runner per repo; first detected wins
        if caps.has("tests", "jest"):
            self._tests(runner, "jest", node_cmd(runner, "jest", "--json", "--ci", "--silent"),
                        partial(parsers.parse_jest_json, tool="jest"), report)
        elif caps.has("tests", "vitest"):
            self._tests(runner, "vitest", node_cmd(runner, "vitest", "run", "--reporter=json"),
                        partial(parsers.parse_jest_json, tool="vitest"), report)
        elif caps.has("tests", "mocha"):
            self._tests(runner, "mocha", node_cmd(runner, "mocha"), parsers.parse_mocha, report)
