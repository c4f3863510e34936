# src/refinery/dev/candidate.py
"""
Structured representation of a generated candidate.

Generators (LLMs or humans) hand back **Candidate** JSON: full-content files
plus optional tests and free-form notes.  Once scored a candidate is never
mutated; refinement works on the materialised working tree instead.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Tuple

from jsonschema import Draft7Validator

from .schema import CANDIDATE_V1, Parsed


@dataclass(frozen=True, slots=True)
class CandidateFile:
    """
    • `path`    – repository-relative path using POSIX slashes.
    • `content` – full file contents after the change.
    """

    path: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "content": self.content}

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "CandidateFile":
        return CandidateFile(path=obj["path"], content=obj.get("content", ""))


@dataclass(frozen=True, slots=True)
class Candidate:
    files: Tuple[CandidateFile, ...] = ()
    tests: Tuple[CandidateFile, ...] = ()
    notes: str = ""
    conventions_used: Tuple[str, ...] = ()

    # --- helpers --------------------------------------------------------- #
    def all_files(self) -> Iterator[CandidateFile]:
        yield from self.files
        yield from self.tests

    def text(self) -> str:
        """Concatenated source of files and tests (for identifier scoring)."""
        return "\n".join(f.content for f in self.all_files())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": [f.to_dict() for f in self.files],
            "tests": [f.to_dict() for f in self.tests],
            "notes": self.notes,
            "conventionsUsed": list(self.conventions_used),
        }

    @staticmethod
    def from_dict(obj: Dict[str, Any]) -> "Candidate":
        return Candidate(
            files=tuple(CandidateFile.from_dict(f) for f in obj.get("files", [])),
            tests=tuple(CandidateFile.from_dict(f) for f in obj.get("tests", [])),
            notes=obj.get("notes", ""),
            conventions_used=tuple(obj.get("conventionsUsed", obj.get("conventions_used", []))),
        )

    # Convenient JSON helpers -------------------------------------------- #
    def to_json(self, *, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @staticmethod
    def from_json(text: str | bytes) -> "Candidate":
        return Candidate.from_dict(json.loads(text))


def parse_candidate(obj: Any) -> Parsed[Candidate]:
    """Validate a raw generator object against ``CANDIDATE_V1``."""
    if isinstance(obj, Candidate):
        return Parsed(value=obj)
    errors = sorted(
        f"{'/'.join(str(p) for p in e.absolute_path) or '<root>'}: {e.message}"
        for e in _CANDIDATE_VALIDATOR.iter_errors(obj)
    )
    if errors:
        return Parsed(errors=tuple(errors))
    return Parsed(value=Candidate.from_dict(obj))


_CANDIDATE_VALIDATOR = Draft7Validator(CANDIDATE_V1)
