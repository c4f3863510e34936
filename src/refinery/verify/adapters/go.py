# src/refinery/verify/adapters/go.py
from __future__ import annotations

from functools import partial

from refinery.repo.probe import Capabilities
from refinery.verify import parsers
from refinery.verify.report import ExecutionReport
from refinery.verify.shell import CommandRunner

from .base import ToolAdapter


class GoAdapter(ToolAdapter):
    """gofmt, golangci-lint / go vet, go build, go test -json."""

    name = "go"
    langs = ("go",)

    def format(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport, *, write: bool = False) -> None:
        if caps.has("formatters", "gofmt"):
            cmd = ["gofmt", "-w", "."] if write else ["gofmt", "-l", "."]
            parse = (lambda _text: []) if write else partial(parsers.parse_format_check, "gofmt")
            self._tool(runner, "gofmt", cmd, parse, report.format_errors, report)

    def lint(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        if caps.has("linters", "golangci-lint"):
            self._tool(runner, "golangci-lint",
                       ["golangci-lint", "run", "--output.json.path=stdout", "--show-stats=false", "./..."],
                       parsers.parse_golangci, report.lint_errors, report)
        elif caps.has("linters", "go-vet"):
            self._tool(runner, "go-vet", ["go", "vet", "./..."],
                       partial(parsers.parse_go_diagnostics, tool="go-vet"), report.lint_errors, report)

    def typecheck(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        if caps.has("typecheckers", "go-build"):
            self._tool(runner, "go-build", ["go", "build", "./..."],
                       partial(parsers.parse_go_diagnostics, tool="go-build"), report.type_errors, report)

    def test(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        if caps.has("tests", "go-test"):
            self._tests(runner, "go-test", ["go", "test", "-json", "-count=1", "./..."],
                        parsers.parse_go_test_json, report)
