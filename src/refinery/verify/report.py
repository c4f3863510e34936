# src/refinery/verify/report.py
"""
ExecutionReport – the uniform outcome of running a candidate through the
verification pipeline.

Lint / type / test failures are *data* here, never exceptions.  JSON keys
follow the camelCase wire names used by judges and fixers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from tabulate import tabulate

LOG_TAIL_CHARS = 4000


@dataclass(slots=True)
class TestResult:
    __test__ = False  # not a pytest class
    passed: int = 0
    failed: int = 0
    details: List[str] = field(default_factory=list)
    coverage_pct: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "passed": self.passed,
            "failed": self.failed,
            "details": list(self.details),
        }
        if self.coverage_pct is not None:
            out["coveragePct"] = self.coverage_pct
        return out

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "TestResult":
        return TestResult(
            passed=int(obj.get("passed", 0)),
            failed=int(obj.get("failed", 0)),
            details=list(obj.get("details", [])),
            coverage_pct=obj.get("coveragePct"),
        )


@dataclass(slots=True)
class ExecutionReport:
    lint_errors: List[str] = field(default_factory=list)
    type_errors: List[str] = field(default_factory=list)
    format_errors: List[str] = field(default_factory=list)
    test: TestResult = field(default_factory=TestResult)
    schema_errors: List[str] = field(default_factory=list)
    boundary_errors: List[str] = field(default_factory=list)
    logs_tail: str = ""

    # ------------------------------------------------------------------ #
    @property
    def compiled(self) -> bool:
        """
        True when no lint, type, schema or boundary error was recorded and
        no test failed.  Formatting drift is reported but non-fatal.
        """
        return (
            not self.lint_errors
            and not self.type_errors
            and not self.schema_errors
            and not self.boundary_errors
            and self.test.failed == 0
        )

    def error_count(self) -> int:
        return (
            len(self.lint_errors)
            + len(self.type_errors)
            + len(self.schema_errors)
            + len(self.boundary_errors)
            + self.test.failed
        )

    def append_log(self, text: str) -> None:
        if not text:
            return
        self.logs_tail = (self.logs_tail + text.rstrip() + "\n")[-LOG_TAIL_CHARS:]

    # --- helpers --------------------------------------------------------- #
    def to_dict(self) -> Dict[str, Any]:
        return {
            "compiled": self.compiled,
            "lintErrors": list(self.lint_errors),
            "typeErrors": list(self.type_errors),
            "formatErrors": list(self.format_errors),
            "test": self.test.to_dict(),
            "schemaErrors": list(self.schema_errors),
            "boundaryErrors": list(self.boundary_errors),
            "logsTail": self.logs_tail,
        }

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "ExecutionReport":
        return ExecutionReport(
            lint_errors=list(obj.get("lintErrors", [])),
            type_errors=list(obj.get("typeErrors", [])),
            format_errors=list(obj.get("formatErrors", [])),
            test=TestResult.from_dict(obj.get("test", {})),
            schema_errors=list(obj.get("schemaErrors", [])),
            boundary_errors=list(obj.get("boundaryErrors", [])),
            logs_tail=obj.get("logsTail", ""),
        )


def format_report(report: ExecutionReport) -> str:
    rows = [
        ("format", len(report.format_errors)),
        ("lint", len(report.lint_errors)),
        ("types", len(report.type_errors)),
        ("tests failed", report.test.failed),
        ("tests passed", report.test.passed),
        ("schema", len(report.schema_errors)),
        ("boundaries", len(report.boundary_errors)),
    ]
    table = tabulate(rows, headers=("check", "count"), tablefmt="github")
    return f"{table}\n\ncompiled: {report.compiled}"
