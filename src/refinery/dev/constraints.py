# src/refinery/dev/constraints.py
"""
Constrained edit surface.

Limits what a candidate or a Fixer patch may touch:

1. paths outside ``allowed_paths`` that match ``read_only_paths`` are off limits;
2. public exports of an existing file must survive the edit unless public
   renames are allowed;
3. an edit rewriting more than half of an existing file is flagged (warning,
   or error when minimal diffs are enforced).
"""

from __future__ import annotations

import ast
import difflib
import logging
import os
import re
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, Iterable, List, Set, Tuple

from .candidate import CandidateFile

logger = logging.getLogger("refinery.dev.constraints")

MAX_CHURN = 0.5

ERROR = "error"
WARNING = "warning"


@dataclass(frozen=True, slots=True)
class EditConstraints:
    allowed_paths: Tuple[str, ...] = ()
    read_only_paths: Tuple[str, ...] = field(default_factory=lambda: default_read_only_paths())
    allow_public_renames: bool = False


@dataclass(frozen=True, slots=True)
class EditViolation:
    path: str
    severity: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    def __str__(self) -> str:
        return f"{self.severity}: {self.path}: {self.message}"


# --------------------------------------------------------------------------- #
# Path matching
# --------------------------------------------------------------------------- #
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """``**`` spans directories, ``*`` stays inside one segment."""
    out = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(out) + "$")


def path_matches(path: str, pattern: str) -> bool:
    path = path.replace("\\", "/")
    if path.startswith("./"):
        path = path[2:]
    if "*" not in pattern:
        return path.startswith(pattern)
    return bool(glob_to_regex(pattern).match(path))


# --------------------------------------------------------------------------- #
# Public exports
# --------------------------------------------------------------------------- #
_JS_EXPORT_RE = re.compile(
    r"export\s+(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(?:function\*?|const|let|var|class|interface|type|enum)\s+([A-Za-z_$][\w$]*)"
)
_RUST_PUB_RE = re.compile(
    r"^\s*pub\s+(?:async\s+)?(?:unsafe\s+)?(?:fn|struct|enum|trait|type|const|static|mod)\s+([A-Za-z_]\w*)",
    re.M,
)
_GO_EXPORT_RE = re.compile(r"^(?:func|type|var|const)\s+(?:\([^)]*\)\s*)?([A-Z]\w*)", re.M)
_PY_CONST_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")


def public_exports(text: str, path: str) -> Set[str]:
    """Names a file makes public, by language of *path*."""
    suffix = Path(path).suffix.lower()
    if suffix == ".py":
        return _python_exports(text)
    if suffix == ".rs":
        return set(_RUST_PUB_RE.findall(text))
    if suffix == ".go":
        return set(_GO_EXPORT_RE.findall(text))
    return set(_JS_EXPORT_RE.findall(text))


def _python_exports(text: str) -> Set[str]:
    try:
        tree = ast.parse(text)
    except SyntaxError:
        # unparsable source: fall back to line regexes
        names = set(re.findall(r"^(?:async\s+)?(?:def|class)\s+([A-Za-z]\w*)", text, re.M))
        return {n for n in names if not n.startswith("_")}

    names: Set[str] = set()
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            if not node.name.startswith("_"):
                names.add(node.name)
        elif isinstance(node, (ast.Assign, ast.AnnAssign)):
            targets = node.targets if isinstance(node, ast.Assign) else [node.target]
            for t in targets:
                if not isinstance(t, ast.Name):
                    continue
                if t.id == "__all__" and isinstance(node.value, (ast.List, ast.Tuple)):
                    names.update(
                        e.value for e in node.value.elts
                        if isinstance(e, ast.Constant) and isinstance(e.value, str)
                    )
                elif _PY_CONST_RE.match(t.id):
                    names.add(t.id)
    return names


# --------------------------------------------------------------------------- #
# Churn
# --------------------------------------------------------------------------- #
def churn_ratio(old: str, new: str) -> float:
    """Lines replaced, deleted or inserted, relative to the old file's length (capped at 1.0)."""
    old_lines = old.split("\n")
    new_lines = new.split("\n")
    matcher = difflib.SequenceMatcher(None, old_lines, new_lines, autojunk=False)
    changed = 0
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag != "equal":
            changed += max(i2 - i1, j2 - j1)
    return min(1.0, changed / len(old_lines))


# --------------------------------------------------------------------------- #
# Public API
# --------------------------------------------------------------------------- #
def check_edit_constraints(
    root: str | os.PathLike[str],
    files: Iterable[CandidateFile],
    constraints: EditConstraints,
    enforce_minimal_diffs: bool = False,
) -> List[EditViolation]:
    """
    Violations for writing *files* (full new contents) under *root*.
    New files skip the rename and churn checks.
    """
    root_path = Path(root)
    out: List[EditViolation] = []
    for f in files:
        allowed = any(path_matches(f.path, p) for p in constraints.allowed_paths)
        if not allowed and any(path_matches(f.path, p) for p in constraints.read_only_paths):
            out.append(EditViolation(f.path, ERROR, "File is read-only and cannot be modified"))
            continue

        existing = root_path / f.path
        if not existing.is_file():
            continue
        try:
            old = existing.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("constraints: cannot read %s: %s", f.path, exc)
            continue

        if not constraints.allow_public_renames:
            gone = public_exports(old, f.path) - public_exports(f.content, f.path)
            for name in sorted(gone):
                out.append(EditViolation(
                    f.path, ERROR,
                    f"Public symbol '{name}' was removed or renamed. This is a breaking change.",
                ))

        ratio = churn_ratio(old, f.content)
        if ratio > MAX_CHURN:
            out.append(EditViolation(
                f.path,
                ERROR if enforce_minimal_diffs else WARNING,
                f"Diff is too large ({ratio * 100:.1f}% of file changed). "
                "Prefer minimal, targeted changes.",
            ))
    return out


def errors_only(violations: Iterable[EditViolation]) -> List[EditViolation]:
    return [v for v in violations if v.severity == ERROR]


def default_read_only_paths() -> Tuple[str, ...]:
    return (
        "node_modules/**/*",
        "dist/**/*",
        "build/**/*",
        ".next/**/*",
        "coverage/**/*",
        "__generated__/**/*",
        "src/gen/**/*",
        "src/generated/**/*",
        "prisma/client/**/*",
        ".git/**/*",
        ".venv/**/*",
        "vendor/**/*",
        "target/**/*",
    )


_FILE_MENTION_RE = re.compile(r"(?:^|\s)([A-Za-z0-9_\-/]+\.[A-Za-z]+)")
_DIR_MENTION_RE = re.compile(r"(?:^|\s)([A-Za-z0-9_\-/]+/)(?=\s|$)")


def infer_allowed_paths(task_spec: str) -> Tuple[str, ...]:
    """File and directory paths named in a task description; ``src/**/*`` when none."""
    found: List[str] = []
    for m in _FILE_MENTION_RE.finditer(task_spec):
        if m.group(1) not in found:
            found.append(m.group(1))
    for m in _DIR_MENTION_RE.finditer(task_spec):
        pat = m.group(1) + "**/*"
        if pat not in found:
            found.append(pat)
    return tuple(found) or ("src/**/*",)
