# tests/test_tool_parsers.py
"""
Normalisation of lint / type / format / test tool output.
"""

from __future__ import annotations

import json

from refinery.verify.parsers import (
    parse_eslint_json,
    parse_format_check,
    parse_go_test_json,
    parse_jest_json,
    parse_mocha,
    parse_mypy,
    parse_pytest,
    parse_ruff_json,
    parse_tsc,
)
from refinery.verify.report import ExecutionReport, TestResult


# --------------------------------------------------------------------------- #
# Diagnostics
# --------------------------------------------------------------------------- #
def test_ruff_json():
    out = json.dumps([
        {"filename": "a.py", "code": "F401", "message": "`os` imported but unused",
         "location": {"row": 1, "column": 8}},
    ])
    assert parse_ruff_json(out) == ["[ruff] a.py: F401: `os` imported but unused (1:8)"]
    assert parse_ruff_json("") == []


def test_ruff_garbage_is_kept_raw():
    assert parse_ruff_json("error: config invalid") == ["[ruff] error: config invalid"]


def test_eslint_warnings_do_not_count():
    out = json.dumps([{
        "filePath": "src/a.ts",
        "messages": [
            {"severity": 1, "ruleId": "no-console", "message": "Unexpected console", "line": 1, "column": 1},
            {"severity": 2, "ruleId": "no-undef", "message": "'x' is not defined", "line": 2, "column": 3},
        ],
    }])
    assert parse_eslint_json(out) == ["[eslint] src/a.ts: no-undef: 'x' is not defined (2:3)"]


def test_mypy_errors_only():
    text = (
        "app.py:3:5: error: Incompatible types in assignment  [assignment]\n"
        "app.py:4: note: See https://mypy.readthedocs.io\n"
        "lib.py:10: error: Name \"y\" is not defined\n"
    )
    assert parse_mypy(text) == [
        "[mypy] app.py: assignment: Incompatible types in assignment (3:5)",
        "[mypy] lib.py: -: Name \"y\" is not defined (10:?)",
    ]


def test_tsc():
    text = "src/a.ts(3,7): error TS2322: Type 'string' is not assignable to type 'number'.\n"
    assert parse_tsc(text) == [
        "[tsc] src/a.ts: TS2322: Type 'string' is not assignable to type 'number'. (3:7)"
    ]


def test_format_check_dedupes_files():
    text = "would reformat src/a.py\nwould reformat src/a.py\nOh no! 1 file would be reformatted.\n"
    assert parse_format_check("black", text) == ["[black] src/a.py: needs formatting"]
    assert parse_format_check("unknown-tool", text) == []


# --------------------------------------------------------------------------- #
# Test runners
# --------------------------------------------------------------------------- #
def test_pytest_summary():
    text = (
        "FAILED tests/test_a.py::test_x - AssertionError\n"
        "1 failed, 3 passed in 0.12s\n"
    )
    result = parse_pytest(text, 1)
    assert (result.passed, result.failed) == (3, 1)
    assert result.details == ["FAILED tests/test_a.py::test_x - AssertionError"]


def test_pytest_collection_error_counts_as_failure():
    result = parse_pytest("ImportError while loading conftest\n", 4)
    assert result.failed == 1
    assert result.details == ["ImportError while loading conftest"]


def test_pytest_no_tests_collected_is_clean():
    assert parse_pytest("no tests ran in 0.01s\n", 5).failed == 0


def test_go_test_json():
    lines = [
        {"Action": "run", "Package": "p", "Test": "TestA"},
        {"Action": "pass", "Package": "p", "Test": "TestA"},
        {"Action": "fail", "Package": "p", "Test": "TestB"},
        {"Action": "fail", "Package": "p"},
    ]
    result = parse_go_test_json("\n".join(json.dumps(ln) for ln in lines), 1)
    assert (result.passed, result.failed) == (1, 1)
    assert result.details == ["[go-test] p.TestB", "[go-test] package p failed"]


def _jest_report(passed: int, failed: int) -> str:
    return json.dumps({
        "numPassedTests": passed,
        "numFailedTests": failed,
        "numRuntimeErrorTestSuites": 0,
        "testResults": [{
            "name": "/repo/src/cart.test.ts",
            "status": "failed" if failed else "passed",
            "assertionResults": [
                {"fullName": "cart adds items", "status": "passed"},
                {"fullName": "cart applies discount", "status": "failed" if failed else "passed"},
            ],
        }],
    })


def test_jest_json_followed_by_stderr_summary():
    # stdout and stderr arrive joined; jest prints its summary on stderr
    text = _jest_report(7, 2) + "\nTests:       2 failed, 7 passed, 9 total\nTime:        1.2 s\n"
    result = parse_jest_json(text, 1)
    assert (result.passed, result.failed) == (7, 2)
    assert result.details == ["[jest] cart applies discount"]


def test_jest_json_after_console_noise():
    text = "console.log {debug: true}\n" + _jest_report(9, 0) + "\nTests: 9 passed, 9 total"
    assert parse_jest_json(text, 0) == TestResult(passed=9, failed=0, details=[])


def test_vitest_uses_the_same_report_shape():
    result = parse_jest_json(_jest_report(3, 1), 1, tool="vitest")
    assert (result.passed, result.failed) == (3, 1)
    assert result.details == ["[vitest] cart applies discount"]


def test_jest_without_json_is_opaque():
    result = parse_jest_json("Cannot find module 'ts-jest'", 1)
    assert result.failed == 1
    assert result.details[0] == "[jest] exit 1"


def test_mocha_summary():
    assert parse_mocha("  5 passing (20ms)\n", 0) == TestResult(passed=5)
    failing = parse_mocha("  4 passing (20ms)\n  1 failing\n\n  1) adds\n", 1)
    assert (failing.passed, failing.failed) == (4, 1)
    crashed = parse_mocha("Error: no test files\n", 1)
    assert crashed.failed == 1


# --------------------------------------------------------------------------- #
# ExecutionReport
# --------------------------------------------------------------------------- #
def test_format_errors_do_not_block_compilation():
    report = ExecutionReport(format_errors=["[black] a.py: needs formatting"])
    assert report.compiled
    assert report.error_count() == 0


def test_failed_tests_block_compilation():
    report = ExecutionReport(test=TestResult(passed=2, failed=1))
    assert not report.compiled
    assert report.error_count() == 1


def test_report_wire_round_trip():
    report = ExecutionReport(
        lint_errors=["[ruff] a.py: F401: unused (1:1)"],
        test=TestResult(passed=1, coverage_pct=87.5),
        logs_tail="tail\n",
    )
    data = report.to_dict()
    assert data["lintErrors"] == report.lint_errors
    assert data["test"]["coveragePct"] == 87.5
    assert data["compiled"] is False
    assert ExecutionReport.from_dict(data) == report


def test_log_tail_is_bounded():
    report = ExecutionReport()
    for _ in range(2000):
        report.append_log("x" * 10)
    assert len(report.logs_tail) <= 4000
