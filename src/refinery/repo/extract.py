# src/refinery/repo/extract.py
"""
Heuristic identifier / import extraction.

Both helpers are deliberately regex based and language agnostic.  They sit
behind a narrow interface so a parser-backed implementation can replace them
without touching the Symbol Index or the Project Brief builder:

    extract_identifiers(text)          -> list[str]
    extract_imports(text, source="")   -> list[ImportEdge]
"""

from __future__ import annotations

import re
from dataclasses import dataclass, asdict
from typing import Dict, List

# --------------------------------------------------------------------------- #
# Constants
# --------------------------------------------------------------------------- #
IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_\-]*")

STOPWORDS = frozenset(
    {
        "class", "function", "def", "return", "var", "let", "const",
        "if", "else", "for", "while", "switch", "case", "break", "continue",
        "import", "from", "export", "package", "type", "interface",
        "struct", "enum", "impl", "pub",
    }
)

# Comment / string scrubbers.  They are conservative: a quote inside a
# comment or an escaped quote may confuse them, which only costs recall.
_BLOCK_COMMENT_RE = re.compile(r"/\*[\s\S]*?\*/")
_LINE_COMMENT_RE = re.compile(r"//[^\n]*|#[^\n]*")
_STRING_RE = re.compile(r"'(?:\\.|[^'\\\n])*'|\"(?:\\.|[^\"\\\n])*\"|`(?:\\.|[^`\\])*`")

# Ordered; the first pattern matching a line wins and yields one edge.
IMPORT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"import\s+[^'\"`]*['\"`]([^'\"`]+)['\"`]"),  # ESM
    re.compile(r"require\(['\"`]([^'\"`]+)['\"`]\)"),  # CommonJS
    re.compile(r"from\s+['\"]([^'\"]+)['\"]"),  # quoted from (TS re-exports)
    re.compile(r"^\s*from\s+([A-Za-z0-9_\.]+)\s+import\b"),  # Python from-import
    re.compile(r"^\s*import\s+([A-Za-z0-9_\.]+)"),  # Python / Java / Kotlin
    re.compile(r"^\s*use\s+([A-Za-z0-9_:/]+?)(?:::\{|::\*|;|\s|$)"),  # Rust
    re.compile(r"^\s*(?:import\s+)?(?:[A-Za-z_]\w*\s+)?\"([A-Za-z0-9_\.\-/]+)\"\s*$"),  # Go block member
)


@dataclass(frozen=True, slots=True)
class ImportEdge:
    """One `source -> target` import, both as written."""

    source: str
    target: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


# --------------------------------------------------------------------------- #
# Public helpers
# --------------------------------------------------------------------------- #
def strip_comments_and_strings(text: str) -> str:
    text = _BLOCK_COMMENT_RE.sub(" ", text)
    text = _STRING_RE.sub(" ", text)
    return _LINE_COMMENT_RE.sub(" ", text)


def extract_identifiers(text: str) -> List[str]:
    """
    Return identifier-shaped tokens in source order (duplicates kept).

    Comments and string literals are removed first; keywords in
    STOPWORDS and tokens of two characters or fewer are dropped.
    """
    scrubbed = strip_comments_and_strings(text)
    return [
        tok
        for tok in IDENT_RE.findall(scrubbed)
        if len(tok) > 2 and tok not in STOPWORDS
    ]


def extract_imports(text: str, source: str = "") -> List[ImportEdge]:
    edges: List[ImportEdge] = []
    in_go_block = False
    for line in text.splitlines():
        stripped = line.strip()
        # Go grouped imports:  import ( "fmt" \n "net/http" )
        if stripped.startswith("import (") or stripped == "import(":
            in_go_block = True
            continue
        if in_go_block and stripped.startswith(")"):
            in_go_block = False
            continue

        for idx, pattern in enumerate(IMPORT_PATTERNS):
            # the bare-quoted form is only meaningful inside a Go import block
            if idx == len(IMPORT_PATTERNS) - 1 and not (
                in_go_block or stripped.startswith("import ")
            ):
                continue
            m = pattern.search(line)
            if m:
                edges.append(ImportEdge(source=source, target=m.group(1)))
                break
    return edges
