# src/refinery/verify/parsers.py
"""
Tool-output parsers.

Every lint / type diagnostic is normalised to

    [<tool>] <file>: <rule>: <message> (<line>:<col>)

Structured output (JSON) is preferred where the tool offers it; plain-text
fallbacks keep the raw line so nothing is silently dropped.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, List, Optional

from .report import TestResult

_DETAIL_LINES = 20


def diagnostic(tool: str, file: str, rule: str, message: str, line: Any = "?", col: Any = "?") -> str:
    rule = rule or "-"
    return f"[{tool}] {file}: {rule}: {message.strip()} ({line}:{col})"


def tail(text: str, lines: int = _DETAIL_LINES) -> List[str]:
    arr = [ln for ln in text.strip().splitlines() if ln.strip()]
    return arr[-lines:]


def _raw(tool: str, text: str, limit: int = 10) -> List[str]:
    return [f"[{tool}] {ln}" for ln in tail(text, limit)]


# --------------------------------------------------------------------------- #
# Linters
# --------------------------------------------------------------------------- #
def parse_ruff_json(text: str) -> List[str]:
    if not text.strip():
        return []
    try:
        items = json.loads(text)
    except json.JSONDecodeError:
        return _raw("ruff", text)
    out = []
    for m in items:
        loc = m.get("location") or {}
        out.append(
            diagnostic("ruff", m.get("filename", "?"), m.get("code") or "", m.get("message", ""),
                       loc.get("row", "?"), loc.get("column", "?"))
        )
    return out


def parse_eslint_json(text: str) -> List[str]:
    """Severity-2 messages only; eslint warnings do not gate compilation."""
    if not text.strip():
        return []
    try:
        files = json.loads(text)
    except json.JSONDecodeError:
        return _raw("eslint", text)
    out = []
    for f in files:
        for m in f.get("messages") or []:
            if m.get("severity", 2) < 2:
                continue
            out.append(
                diagnostic("eslint", f.get("filePath", "?"), m.get("ruleId") or "", m.get("message", ""),
                           m.get("line", "?"), m.get("column", "?"))
            )
    return out


_FLAKE8_RE = re.compile(r"^(?P<file>[^:\n]+):(?P<line>\d+):(?P<col>\d+):\s*(?P<rule>[A-Z]+\d+)\s+(?P<msg>.*)$")


def parse_flake8(text: str) -> List[str]:
    out = []
    for ln in text.splitlines():
        m = _FLAKE8_RE.match(ln.strip())
        if m:
            out.append(diagnostic("flake8", m["file"], m["rule"], m["msg"], m["line"], m["col"]))
        elif ln.strip():
            out.append(f"[flake8] {ln.strip()}")
    return out


def parse_pylint_json(text: str) -> List[str]:
    if not text.strip():
        return []
    try:
        items = json.loads(text)
    except json.JSONDecodeError:
        return _raw("pylint", text)
    return [
        diagnostic("pylint", m.get("path", "?"), m.get("symbol") or m.get("message-id", ""),
                   m.get("message", ""), m.get("line", "?"), m.get("column", "?"))
        for m in items
        if m.get("type") in ("error", "fatal", "warning")
    ]


_GOLANGCI_RE = re.compile(r"^(?P<file>[^:\n]+\.go):(?P<line>\d+):(?P<col>\d+):\s*(?P<msg>.*?)(?:\s+\((?P<rule>[\w-]+)\))?$")


def parse_golangci(text: str) -> List[str]:
    """JSON report from ``--output.json.path=stdout``; plain text lines otherwise."""
    doc = _embedded_json(text, ("Issues",))
    if doc is not None:
        out = []
        for issue in doc.get("Issues") or []:
            pos = issue.get("Pos") or {}
            out.append(diagnostic("golangci-lint", pos.get("Filename", "?"), issue.get("FromLinter", ""),
                                  issue.get("Text", ""), pos.get("Line", "?"), pos.get("Column", "?")))
        return out
    out = []
    for ln in text.splitlines():
        m = _GOLANGCI_RE.match(ln.strip())
        if m:
            out.append(diagnostic("golangci-lint", m["file"], m["rule"] or "", m["msg"], m["line"], m["col"]))
    return out


_GO_VET_RE = re.compile(r"^(?:vet: )?(?P<file>[^:\n]+\.go):(?P<line>\d+):(?:(?P<col>\d+):)?\s*(?P<msg>.*)$")


def parse_go_diagnostics(text: str, tool: str = "go-vet") -> List[str]:
    out = []
    for ln in text.splitlines():
        m = _GO_VET_RE.match(ln.strip())
        if m:
            out.append(diagnostic(tool, m["file"], "", m["msg"], m["line"], m["col"] or "?"))
    return out


def parse_cargo_json(text: str, tool: str = "clippy", levels: Iterable[str] = ("error", "warning")) -> List[str]:
    """`cargo clippy|check --message-format=json` (one JSON object per line)."""
    wanted = set(levels)
    out = []
    for ln in text.splitlines():
        ln = ln.strip()
        if not ln.startswith("{"):
            continue
        try:
            obj = json.loads(ln)
        except json.JSONDecodeError:
            continue
        if obj.get("reason") != "compiler-message":
            continue
        msg = obj.get("message") or {}
        if msg.get("level") not in wanted:
            continue
        spans = [s for s in msg.get("spans") or [] if s.get("is_primary")]
        if not spans:
            continue
        span = spans[0]
        code = (msg.get("code") or {}).get("code", "")
        out.append(
            diagnostic(tool, span.get("file_name", "?"), code, msg.get("message", ""),
                       span.get("line_start", "?"), span.get("column_start", "?"))
        )
    return out


# --------------------------------------------------------------------------- #
# Type-checkers
# --------------------------------------------------------------------------- #
_MYPY_RE = re.compile(
    r"^(?P<file>[^:\n]+):(?P<line>\d+):(?:(?P<col>\d+):)?\s*error:\s*(?P<msg>.*?)(?:\s+\[(?P<rule>[\w-]+)\])?$"
)


def parse_mypy(text: str) -> List[str]:
    out = []
    for ln in text.splitlines():
        m = _MYPY_RE.match(ln.strip())
        if m:
            out.append(diagnostic("mypy", m["file"], m["rule"] or "", m["msg"], m["line"], m["col"] or "?"))
    return out


def parse_pyright_json(text: str) -> List[str]:
    if not text.strip():
        return []
    try:
        doc = json.loads(text)
    except json.JSONDecodeError:
        return _raw("pyright", text)
    out = []
    for d in doc.get("generalDiagnostics") or doc.get("diagnostics") or []:
        if d.get("severity", "error") != "error":
            continue
        start = (d.get("range") or {}).get("start") or {}
        out.append(
            diagnostic("pyright", d.get("file", "?"), d.get("rule", ""), d.get("message", ""),
                       start.get("line", -1) + 1, start.get("character", -1) + 1)
        )
    return out


_TSC_RE = re.compile(r"^(?P<file>.+?)\((?P<line>\d+),(?P<col>\d+)\):\s*error\s+(?P<rule>TS\d+):\s*(?P<msg>.*)$")
_TSC_GLOBAL_RE = re.compile(r"error\s+(?P<rule>TS\d+):\s*(?P<msg>.*)$")


def parse_tsc(text: str) -> List[str]:
    out = []
    for ln in text.splitlines():
        ln = ln.strip()
        m = _TSC_RE.match(ln)
        if m:
            out.append(diagnostic("tsc", m["file"], m["rule"], m["msg"], m["line"], m["col"]))
            continue
        g = _TSC_GLOBAL_RE.search(ln)
        if g:
            out.append(diagnostic("tsc", "<project>", g["rule"], g["msg"]))
    return out


# --------------------------------------------------------------------------- #
# Formatters (check mode)
# --------------------------------------------------------------------------- #
_FORMAT_PATTERNS = {
    "black": re.compile(r"^would reformat (?P<file>.+)$"),
    "ruff-format": re.compile(r"^Would reformat:?\s+(?P<file>.+)$"),
    "prettier": re.compile(r"^\[warn\]\s+(?P<file>(?!Code style issues).+)$"),
    "rustfmt": re.compile(r"^Diff in (?P<file>.+?)(?: at line \d+)?:?$"),
}


def parse_format_check(tool: str, text: str) -> List[str]:
    if tool == "gofmt":
        files = [ln.strip() for ln in text.splitlines() if ln.strip().endswith(".go")]
    else:
        pattern = _FORMAT_PATTERNS.get(tool)
        if pattern is None:
            return []
        files = []
        for ln in text.splitlines():
            m = pattern.match(ln.strip())
            if m:
                files.append(m["file"].strip())
    uniq = list(dict.fromkeys(files))
    return [f"[{tool}] {f}: needs formatting" for f in uniq]


# --------------------------------------------------------------------------- #
# Test runners
# --------------------------------------------------------------------------- #
def _count(pattern: str, text: str) -> int:
    m = re.search(pattern, text, re.I)
    return int(m.group(1)) if m else 0


def parse_pytest(text: str, returncode: int) -> TestResult:
    # summary line:  "3 failed, 10 passed, 1 error in 0.42s"
    summary = ""
    for ln in reversed(text.splitlines()):
        if re.search(r"\d+\s+(passed|failed|error)", ln) and " in " in ln:
            summary = ln
            break
    passed = _count(r"(\d+)\s+passed", summary)
    failed = _count(r"(\d+)\s+failed", summary) + _count(r"(\d+)\s+errors?", summary)
    coverage = _coverage(r"^TOTAL\s+.*?(\d+(?:\.\d+)?)%\s*$", text)
    details = [ln for ln in text.splitlines() if ln.startswith(("FAILED ", "ERROR "))][:_DETAIL_LINES]
    if returncode not in (0, 5) and failed == 0:
        # collection / usage errors (5 == no tests collected)
        failed = 1
        details = details or tail(text)
    return TestResult(passed=passed, failed=failed, details=details, coverage_pct=coverage)


_JSON = json.JSONDecoder()
_JEST_KEYS = ("numPassedTests", "numFailedTests", "testResults")


def _embedded_json(text: str, keys: Iterable[str]) -> Optional[dict]:
    """First JSON object in *text* carrying one of *keys*; console noise may surround it."""
    start = text.find("{")
    while start >= 0:
        try:
            doc, end = _JSON.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(doc, dict) and any(k in doc for k in keys):
            return doc
        start = text.find("{", end)
    return None


def parse_jest_json(text: str, returncode: int, tool: str = "jest") -> TestResult:
    # stdout carries the JSON report, the stderr summary follows it
    doc = _embedded_json(text, _JEST_KEYS)
    if doc is None:
        return _opaque(tool, text, returncode)
    details: List[str] = []
    for suite in doc.get("testResults") or []:
        for a in suite.get("assertionResults") or []:
            if a.get("status") == "failed":
                details.append(f"[{tool}] {a.get('fullName') or a.get('title')}")
        if suite.get("status") == "failed" and not suite.get("assertionResults"):
            details.append(f"[{tool}] {suite.get('name')}: {(suite.get('message') or '').strip()[:200]}")
    failed = int(doc.get("numFailedTests", 0)) + int(doc.get("numRuntimeErrorTestSuites", 0))
    return TestResult(
        passed=int(doc.get("numPassedTests", 0)),
        failed=failed,
        details=details[:_DETAIL_LINES],
    )


def parse_mocha(text: str, returncode: int) -> TestResult:
    passed = _count(r"(\d+)\s+passing", text)
    failed = _count(r"(\d+)\s+failing", text)
    if returncode != 0 and failed == 0:
        return _opaque("mocha", text, returncode, passed)
    return TestResult(passed=passed, failed=failed, details=tail(text) if failed else [])


def parse_go_test_json(text: str, returncode: int) -> TestResult:
    passed = failed = 0
    details: List[str] = []
    for ln in text.splitlines():
        ln = ln.strip()
        if not ln.startswith("{"):
            continue
        try:
            ev = json.loads(ln)
        except json.JSONDecodeError:
            continue
        if not ev.get("Test"):
            if ev.get("Action") == "fail" and ev.get("Package"):
                details.append(f"[go-test] package {ev['Package']} failed")
            continue
        if ev.get("Action") == "pass":
            passed += 1
        elif ev.get("Action") == "fail":
            failed += 1
            details.append(f"[go-test] {ev.get('Package', '?')}.{ev['Test']}")
    if returncode != 0 and failed == 0:
        failed = 1
        details = details or tail(text)
    return TestResult(passed=passed, failed=failed, details=details[:_DETAIL_LINES])


_CARGO_RESULT_RE = re.compile(r"test result: \w+\.\s+(\d+) passed;\s+(\d+) failed")


def parse_cargo_test(text: str, returncode: int) -> TestResult:
    passed = failed = 0
    for m in _CARGO_RESULT_RE.finditer(text):
        passed += int(m.group(1))
        failed += int(m.group(2))
    details = [ln.strip() for ln in text.splitlines() if ln.strip().endswith("... FAILED")]
    if returncode != 0 and failed == 0:
        failed = 1
        details = details or tail(text)
    return TestResult(passed=passed, failed=failed, details=details[:_DETAIL_LINES])


def parse_jvm_tests(text: str, returncode: int) -> TestResult:
    gradle = re.search(r"(\d+)\s+tests?\s+completed,\s*(\d+)\s+failed", text, re.I)
    if gradle:
        total, failed = int(gradle.group(1)), int(gradle.group(2))
        return TestResult(passed=total - failed, failed=failed, details=tail(text))
    runs = re.findall(r"Tests run:\s*(\d+),\s*Failures:\s*(\d+),\s*Errors:\s*(\d+)", text)
    if runs:
        total, fails, errors = (int(x) for x in runs[-1])
        failed = fails + errors
        return TestResult(passed=total - failed, failed=failed, details=tail(text) if failed else [])
    return _opaque("jvm", text, returncode)


def _opaque(tool: str, text: str, returncode: int, passed: int = 0) -> TestResult:
    if returncode == 0:
        return TestResult(passed=passed)
    return TestResult(passed=passed, failed=1, details=[f"[{tool}] exit {returncode}"] + tail(text))


def _coverage(pattern: str, text: str) -> Optional[float]:
    m = re.search(pattern, text, re.M)
    return float(m.group(1)) if m else None
