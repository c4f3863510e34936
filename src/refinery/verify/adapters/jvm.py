# src/refinery/verify/adapters/jvm.py
from __future__ import annotations

import os

from refinery.repo.probe import Capabilities
from refinery.verify import parsers
from refinery.verify.report import ExecutionReport
from refinery.verify.shell import CommandRunner

from .base import ToolAdapter


class JvmAdapter(ToolAdapter):
    """Maven / Gradle compile + test.  Wrapper scripts win over global installs."""

    name = "jvm"
    langs = ("java", "kotlin")

    def _build_tool(self, runner: CommandRunner, caps: Capabilities) -> tuple[str, list[str]] | None:
        if caps.has("tests", "gradle") or caps.has("package_managers", "gradle"):
            wrapper = os.path.join(runner.cwd, "gradlew")
            return "gradle", [wrapper if os.path.isfile(wrapper) else "gradle", "-q"]
        if caps.has("tests", "maven") or caps.has("package_managers", "maven"):
            wrapper = os.path.join(runner.cwd, "mvnw")
            return "maven", [wrapper if os.path.isfile(wrapper) else "mvn", "-q", "-B"]
        return None

    def typecheck(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        build = self._build_tool(runner, caps)
        if build is None:
            return
        tool, base = build
        goal = ["compileJava"] if tool == "gradle" else ["-DskipTests", "compile"]
        self._tool(runner, tool, base + goal,
                   lambda text: [f"[{tool}] {ln.strip()}" for ln in text.splitlines()
                                 if "error:" in ln or "[ERROR]" in ln],
                   report.type_errors, report)

    def test(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        build = self._build_tool(runner, caps)
        if build is None:
            return
        tool, base = build
        goal = ["test"] if tool == "gradle" else ["-DskipITs", "test"]
        self._tests(runner, tool, base + goal, parsers.parse_jvm_tests, report)
