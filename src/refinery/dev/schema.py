# src/refinery/dev/schema.py
"""
Runtime JSON-Schema definitions that judges, fixers and generators *must*
follow, plus the typed result-or-errors value their parsers return.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, Tuple, TypeVar

T = TypeVar("T")


class ProtocolError(ValueError):
    """An external Judge / Fixer / generator returned a malformed object."""


@dataclass(frozen=True)
class Parsed(Generic[T]):
    """Either a typed value or the list of reasons it could not be built."""

    value: Optional[T] = None
    errors: Tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.errors and self.value is not None

    def unwrap(self) -> T:
        if not self.ok:
            raise ProtocolError("; ".join(self.errors) or "no value")
        return self.value  # type: ignore[return-value]


# --------------------------------------------------------------------------- #
# Fixer patch
# --------------------------------------------------------------------------- #
FIXER_PATCH_V1 = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "RefineryPatch",
    "type": "object",
    "required": ["ops"],
    "properties": {
        "ops": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["kind", "path"],
                "properties": {
                    "kind": {"type": "string", "enum": ["add", "remove", "edit", "splice"]},
                    "path": {"type": "string", "minLength": 1},
                    "content": {"type": "string"},
                    "find": {"type": "string", "minLength": 1},
                    "replace": {"type": "string"},
                    "occurrences": {"type": "integer", "minimum": 1},
                    "start": {"type": "integer", "minimum": 0},
                    "deleteCount": {"type": "integer", "minimum": 0},
                    "insert": {"type": "string"},
                },
            },
        },
    },
}

# --------------------------------------------------------------------------- #
# Judge verdict
# --------------------------------------------------------------------------- #
_SCORE = {"type": "number", "minimum": 0, "maximum": 1}

JUDGE_VERDICT_V1 = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "JudgeVerdict",
    "type": "object",
    "required": ["verdict", "scores", "explanations", "fix_plan"],
    "properties": {
        "verdict": {"type": "string", "enum": ["accept", "revise", "reject"]},
        "scores": {
            "type": "object",
            "required": ["compilation", "tests_functional", "tests_edge", "types", "style", "security"],
            "properties": {
                "compilation": _SCORE,
                "tests_functional": _SCORE,
                "tests_edge": _SCORE,
                "types": _SCORE,
                "style": _SCORE,
                "security": _SCORE,
                "boundaries": _SCORE,
                "schema": _SCORE,
            },
        },
        "explanations": {
            "type": "object",
            "required": ["root_cause", "minimal_fix"],
            "properties": {
                "root_cause": {"type": "string"},
                "minimal_fix": {"type": "string"},
            },
        },
        "fix_plan": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["file", "operation", "brief"],
                "properties": {
                    "file": {"type": "string"},
                    "operation": {"type": "string", "enum": ["edit", "add", "remove"]},
                    "brief": {"type": "string"},
                },
            },
        },
    },
}

# --------------------------------------------------------------------------- #
# Generated candidate
# --------------------------------------------------------------------------- #
_FILE = {
    "type": "object",
    "required": ["path", "content"],
    "properties": {
        "path": {"type": "string", "minLength": 1},
        "content": {"type": "string"},
    },
}

CANDIDATE_V1 = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "GeneratedCandidate",
    "type": "object",
    "required": ["files"],
    "properties": {
        "files": {"type": "array", "minItems": 1, "items": _FILE},
        "tests": {"type": "array", "items": _FILE},
        "notes": {"type": "string"},
        "conventionsUsed": {"type": "array", "items": {"type": "string"}},
    },
}
