# src/refinery/repo/naming.py
"""
Casing detection and per-role naming statistics.

Roles
-----
variable  – assignment targets / `let|const|var|val` declarations
type      – names following class / interface / type / struct / enum / trait
constant  – ALL-CAPS assignment targets
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

CAMEL = "camelCase"
PASCAL = "PascalCase"
SNAKE = "snake_case"
UPPER_SNAKE = "UPPER_SNAKE_CASE"
KEBAB = "kebab-case"

# Mutually exclusive; evaluated in this order.
CASE_TESTS: tuple[tuple[str, re.Pattern[str]], ...] = (
    (CAMEL, re.compile(r"^[a-z]+(?:[A-Z][a-z0-9]*)+$")),
    (PASCAL, re.compile(r"^[A-Z][a-z0-9]+(?:[A-Z][a-z0-9]*)*$")),
    (SNAKE, re.compile(r"^[a-z]+(?:_[a-z0-9]+)+$")),
    (UPPER_SNAKE, re.compile(r"^[A-Z]+(?:_[A-Z0-9]+)+$")),
    (KEBAB, re.compile(r"^[a-z]+(?:-[a-z0-9]+)+$")),
)

ROLE_DEFAULTS = {"variable": CAMEL, "type": PASCAL, "constant": UPPER_SNAKE}

_TYPE_DECL_RE = re.compile(
    r"\b(?:class|interface|type|struct|enum|trait|record|object)\s+([A-Za-z_][A-Za-z0-9_]*)"
)
_VAR_DECL_RE = re.compile(
    r"\b(?:let|const|var|val|mut)\s+([A-Za-z_][A-Za-z0-9_]*)"
)
_ASSIGN_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*(?::[^=\n]+)?=(?!=)", re.M)
_GO_SHORT_RE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\s*:=")
_FUNC_RE = re.compile(r"\b(?:def|fn|func|function)\s+([A-Za-z_][A-Za-z0-9_]*)")


def detect_case(token: str) -> Optional[str]:
    """Return the casing style of *token*, or None for single-word tokens."""
    for name, pattern in CASE_TESTS:
        if pattern.match(token):
            return name
    return None


@dataclass(slots=True)
class NamingStats:
    """Case histograms per role, accumulated across files."""

    variable: Counter = field(default_factory=Counter)
    type: Counter = field(default_factory=Counter)
    constant: Counter = field(default_factory=Counter)

    def observe(self, text: str) -> None:
        for name in _TYPE_DECL_RE.findall(text):
            self._count(self.type, name)

        candidates = (
            _VAR_DECL_RE.findall(text)
            + _ASSIGN_RE.findall(text)
            + _GO_SHORT_RE.findall(text)
            + _FUNC_RE.findall(text)
        )
        for name in candidates:
            style = detect_case(name)
            if style == UPPER_SNAKE:
                self.constant[style] += 1
            elif style is not None:
                self.variable[style] += 1

    @staticmethod
    def _count(counter: Counter, name: str) -> None:
        style = detect_case(name)
        if style is not None:
            counter[style] += 1

    # ------------------------------------------------------------------ #
    def recommend(self) -> Dict[str, str]:
        """Majority style per role; the role default wins ties and empty roles."""
        out: Dict[str, str] = {}
        for role, default in ROLE_DEFAULTS.items():
            counter: Counter = getattr(self, role)
            out[role] = _majority(counter, default)
        return out


def _majority(counter: Counter, default: str) -> str:
    if not counter:
        return default
    best = max(counter.values())
    winners = [style for style, n in counter.items() if n == best]
    if default in winners:
        return default
    return sorted(winners)[0]


def case_histogram(tokens: Iterable[str]) -> Counter:
    hist: Counter = Counter()
    for tok in tokens:
        style = detect_case(tok)
        if style:
            hist[style] += 1
    return hist
