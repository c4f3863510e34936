# src/refinery/verify/adapters/python.py
from __future__ import annotations

from functools import partial

from refinery.repo.probe import Capabilities
from refinery.verify import parsers
from refinery.verify.report import ExecutionReport
from refinery.verify.shell import CommandRunner

from .base import ToolAdapter


class PythonAdapter(ToolAdapter):
    """black / ruff-format, ruff / flake8 / pylint, mypy / pyright, pytest."""

    name = "python"
    langs = ("python",)

    def format(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport, *, write: bool = False) -> None:
        if caps.has("formatters", "black"):
            cmd = ["black", "."] if write else ["black", "--check", "."]
            self._tool(runner, "black", cmd, partial(parsers.parse_format_check, "black"),
                       report.format_errors, report)
        if caps.has("formatters", "ruff-format"):
            cmd = ["ruff", "format", "."] if write else ["ruff", "format", "--check", "."]
            self._tool(runner, "ruff-format", cmd, partial(parsers.parse_format_check, "ruff-format"),
                       report.format_errors, report)

    def lint(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        if caps.has("linters", "ruff"):
            self._tool(runner, "ruff", ["ruff", "check", "--output-format=json", "."],
                       parsers.parse_ruff_json, report.lint_errors, report)
        if caps.has("linters", "flake8"):
            self._tool(runner, "flake8", ["flake8", "."], parsers.parse_flake8, report.lint_errors, report)
        if caps.has("linters", "pylint"):
            self._tool(runner, "pylint",
                       ["pylint", "--recursive=y", "--output-format=json", "--disable=C,R", "."],
                       parsers.parse_pylint_json, report.lint_errors, report)

    def typecheck(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        if caps.has("typecheckers", "mypy"):
            self._tool(runner, "mypy",
                       ["mypy", ".", "--hide-error-context", "--no-error-summary", "--no-color-output",
                        "--show-column-numbers"],
                       parsers.parse_mypy, report.type_errors, report)
        if caps.has("typecheckers", "pyright"):
            self._tool(runner, "pyright", ["pyright", "--outputjson"],
                       parsers.parse_pyright_json, report.type_errors, report)

    def test(self, runner: CommandRunner, caps: Capabilities, report: ExecutionReport) -> None:
        if caps.has("tests", "pytest"):
            self._tests(runner, "pytest", ["pytest", "-q", "-p", "no:cacheprovider"],
                        parsers.parse_pytest, report)
