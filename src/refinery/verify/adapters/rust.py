# src/refinery/verify/adapters/rust.py
from __future__ import annotations

from functools import partial

from refinery.repo.probe import Capabilities
from refinery.verify import parsers
from refinery.verify.report import ExecutionReport
from refinery.verify.shell import CommandRunner

from .base import ToolAdapter


class RustAdapter(ToolAdapter):
    """cargo fmt, cargo clippy, cargo check, cargo test."""

    name = "rust"
    langs = ("rust",)

    def format(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport, *, write: bool = False) -> None:
        if caps.has("formatters", "rustfmt"):
            cmd = ["cargo", "fmt"] if write else ["cargo", "fmt", "--check"]
            self._tool(runner, "rustfmt", cmd, partial(parsers.parse_format_check, "rustfmt"),
                       report.format_errors, report)

    def lint(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        if caps.has("linters", "clippy"):
            self._tool(runner, "clippy", ["cargo", "clippy", "--quiet", "--message-format=json"],
                       partial(parsers.parse_cargo_json, tool="clippy"), report.lint_errors, report)

    def typecheck(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        if caps.has("typecheckers", "cargo-check"):
            self._tool(runner, "cargo-check", ["cargo", "check", "--quiet", "--message-format=json"],
                       partial(parsers.parse_cargo_json, tool="cargo-check", levels=("error",)),
                       report.type_errors, report)

    def test(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        if caps.has("tests", "cargo-test"):
            self._tests(runner, "cargo-test", ["cargo", "test"], parsers.parse_cargo_test, report)
