# src/refinery/dev/patch.py
"""
Fixer patches: typed ops, validation, size guard and in-place application.

Wire format (JSON)::

    {"ops": [
      {"kind": "add",    "path": "...", "content": "..."},
      {"kind": "remove", "path": "..."},
      {"kind": "edit",   "path": "...", "find": "...", "replace": "...", "occurrences": 1},
      {"kind": "splice", "path": "...", "start": 0, "deleteCount": 0, "insert": "..."}
    ]}

Ops apply strictly in order.  An ``edit`` replaces up to ``occurrences``
literal matches, each search starting where the previous replacement ended;
fewer matches than requested is not an error.  ``splice`` offsets are
character offsets into the decoded text.
"""

from __future__ import annotations

import difflib
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Tuple, Union

from .schema import Parsed

logger = logging.getLogger("refinery.dev.patch")

KINDS = ("add", "remove", "edit", "splice")


class UnsafePathError(ValueError):
    """Path is absolute or escapes the repository root."""


class PatchGuardError(RuntimeError):
    """Patch exceeds the op-count or content-size ceiling."""


class PatchApplyError(RuntimeError):
    """An op could not be applied to the working tree."""


# --------------------------------------------------------------------------- #
# Typed ops
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class AddOp:
    kind: ClassVar[str] = "add"
    path: str
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "path": self.path, "content": self.content}


@dataclass(frozen=True, slots=True)
class RemoveOp:
    kind: ClassVar[str] = "remove"
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "path": self.path}


@dataclass(frozen=True, slots=True)
class EditOp:
    kind: ClassVar[str] = "edit"
    path: str
    find: str
    replace: str
    occurrences: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "path": self.path,
            "find": self.find,
            "replace": self.replace,
            "occurrences": self.occurrences,
        }


@dataclass(frozen=True, slots=True)
class SpliceOp:
    kind: ClassVar[str] = "splice"
    path: str
    start: int
    delete_count: int
    insert: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "path": self.path,
            "start": self.start,
            "deleteCount": self.delete_count,
            "insert": self.insert,
        }


PatchOp = Union[AddOp, RemoveOp, EditOp, SpliceOp]


@dataclass(frozen=True, slots=True)
class Patch:
    ops: Tuple[PatchOp, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"ops": [op.to_dict() for op in self.ops]}

    @staticmethod
    def from_dict(obj: Mapping[str, Any]) -> "Patch":
        return Patch(ops=tuple(ops_from_dict(o) for o in obj.get("ops", [])))

    def paths(self) -> List[str]:
        seen: List[str] = []
        for op in self.ops:
            if op.path not in seen:
                seen.append(op.path)
        return seen

    def counts(self) -> Dict[str, int]:
        out = {k: 0 for k in KINDS}
        for op in self.ops:
            out[op.kind] += 1
        return out


@dataclass(frozen=True, slots=True)
class PatchLimits:
    max_ops: int = 50
    max_bytes: int = 50_000


# Prefixes of the validation messages produced by the size ceilings.
GUARD_ERRORS = ("too many ops", "patch content too large")


# --------------------------------------------------------------------------- #
# Validation
# --------------------------------------------------------------------------- #
def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _path_problem(path: str) -> Optional[str]:
    p = PurePosixPath(path.replace("\\", "/"))
    if p.is_absolute() or (len(path) > 1 and path[1] == ":"):
        return "must be relative"
    depth = 0
    for part in p.parts:
        if part == "..":
            depth -= 1
            if depth < 0:
                return "escapes the repository root"
        elif part not in (".", ""):
            depth += 1
    if depth == 0:
        return "names the repository root"
    return None


def validate_fixer_patch(obj: Any, limits: PatchLimits | None = None) -> Parsed[Patch]:
    """
    Check a raw Fixer object and build a typed :class:`Patch`.

    Every problem is reported, not only the first.  An empty ``ops`` list is
    a valid (no-op) patch.
    """
    limits = limits or PatchLimits()
    if not isinstance(obj, Mapping) or not isinstance(obj.get("ops"), list):
        return Parsed(errors=("`ops` array required",))

    raw_ops = obj["ops"]
    errs: List[str] = []
    ops: List[PatchOp] = []
    if len(raw_ops) > limits.max_ops:
        errs.append(f"too many ops: {len(raw_ops)} > {limits.max_ops}")

    size = 0
    for i, op in enumerate(raw_ops):
        if not isinstance(op, Mapping):
            errs.append(f"op[{i}] must be an object")
            continue
        kind, path = op.get("kind"), op.get("path")
        if not kind or not isinstance(path, str) or not path:
            errs.append(f"op[{i}] missing kind/path")
            continue
        if kind not in KINDS:
            errs.append(f"op[{i}] invalid kind {kind}")
            continue
        problem = _path_problem(path)
        if problem:
            errs.append(f"op[{i}] path {path!r} {problem}")
            continue

        if kind == "add":
            content = op.get("content")
            if not isinstance(content, str):
                errs.append(f"op[{i}] add requires content")
                continue
            size += len(content.encode("utf-8"))
            ops.append(AddOp(path=path, content=content))

        elif kind == "remove":
            ops.append(RemoveOp(path=path))

        elif kind == "edit":
            find, replace = op.get("find"), op.get("replace")
            if not isinstance(find, str) or not isinstance(replace, str):
                errs.append(f"op[{i}] edit requires find/replace strings")
                continue
            if not find:
                errs.append(f"op[{i}] edit requires a non-empty find string")
                continue
            occ = op.get("occurrences", 1)
            if occ is None:
                occ = 1
            if not _is_int(occ) or occ < 1:
                errs.append(f"op[{i}] edit occurrences must be a positive integer")
                continue
            size += len(replace.encode("utf-8"))
            ops.append(EditOp(path=path, find=find, replace=replace, occurrences=occ))

        else:  # splice
            start, count = op.get("start"), op.get("deleteCount")
            if not _is_int(start) or not _is_int(count):
                errs.append(f"op[{i}] splice requires start/deleteCount numbers")
                continue
            if start < 0 or count < 0:
                errs.append(f"op[{i}] splice start/deleteCount must be non-negative")
                continue
            insert = op.get("insert", "")
            if insert is None:
                insert = ""
            if not isinstance(insert, str):
                errs.append(f"op[{i}] splice insert must be a string")
                continue
            size += len(insert.encode("utf-8"))
            ops.append(SpliceOp(path=path, start=start, delete_count=count, insert=insert))

    if size > limits.max_bytes:
        errs.append(f"patch content too large: {size} > {limits.max_bytes}")

    if errs:
        return Parsed(errors=tuple(errs))
    return Parsed(value=Patch(ops=tuple(ops)))


def content_bytes(patch: Patch) -> int:
    size = 0
    for op in patch.ops:
        if isinstance(op, AddOp):
            size += len(op.content.encode("utf-8"))
        elif isinstance(op, EditOp):
            size += len(op.replace.encode("utf-8"))
        elif isinstance(op, SpliceOp):
            size += len(op.insert.encode("utf-8"))
    return size


def diff_size_guard(patch: Patch, limits: PatchLimits | None = None) -> None:
    limits = limits or PatchLimits()
    if len(patch.ops) > limits.max_ops:
        raise PatchGuardError(f"too many ops: {len(patch.ops)} > {limits.max_ops}")
    size = content_bytes(patch)
    if size > limits.max_bytes:
        raise PatchGuardError(f"patch content too large: {size} > {limits.max_bytes}")


# --------------------------------------------------------------------------- #
# Application
# --------------------------------------------------------------------------- #
def resolve_in_root(root: str | os.PathLike[str], rel: str) -> Path:
    """Absolute path of *rel* under *root*; refuses anything outside it."""
    root_path = Path(root).resolve()
    if not rel or Path(rel).is_absolute() or PurePosixPath(rel.replace("\\", "/")).is_absolute():
        raise UnsafePathError(f"{rel!r} is not a repository-relative path")
    target = (root_path / rel).resolve()
    if target == root_path or root_path not in target.parents:
        raise UnsafePathError(f"{rel!r} escapes {root_path}")
    return target


def _edit_text(text: str, op: EditOp) -> str:
    idx = 0
    done = 0
    while done < op.occurrences:
        hit = text.find(op.find, idx)
        if hit < 0:
            break
        text = text[:hit] + op.replace + text[hit + len(op.find):]
        idx = hit + len(op.replace)
        done += 1
    if done == 0:
        logger.warning("patch: edit on %s matched nothing", op.path)
    return text


def _splice_text(text: str, op: SpliceOp) -> str:
    return text[:op.start] + op.insert + text[op.start + op.delete_count:]


def _transform(current: Optional[str], op: PatchOp) -> Optional[str]:
    """New content for *op*'s path, ``None`` meaning the file is absent."""
    if isinstance(op, AddOp):
        return op.content
    if isinstance(op, RemoveOp):
        return None
    if current is None:
        raise PatchApplyError(f"{op.kind} on missing file {op.path}")
    if isinstance(op, EditOp):
        return _edit_text(current, op)
    return _splice_text(current, op)


def apply_patch(root: str | os.PathLike[str], patch: Patch) -> List[str]:
    """
    Apply *patch* in place under *root*, op by op.

    Returns the touched repository-relative paths in first-touch order.
    Partial application is possible on failure; callers wanting atomicity
    capture a :class:`PatchSnapshot` first.
    """
    touched: List[str] = []
    for i, op in enumerate(patch.ops):
        try:
            target = resolve_in_root(root, op.path)
        except UnsafePathError as exc:
            raise PatchApplyError(f"op[{i}]: {exc}") from exc
        try:
            current = target.read_text(encoding="utf-8") if target.is_file() else None
            new = _transform(current, op)
            if new is None:
                if target.is_file():
                    target.unlink()
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(new, encoding="utf-8")
        except PatchApplyError as exc:
            raise PatchApplyError(f"op[{i}]: {exc}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise PatchApplyError(f"op[{i}] {op.kind} {op.path}: {exc}") from exc
        if op.path not in touched:
            touched.append(op.path)
    logger.info("patch: applied %d op(s) to %d file(s)", len(patch.ops), len(touched))
    return touched


def preview_patch(root: str | os.PathLike[str], patch: Patch) -> Dict[str, Tuple[Optional[str], Optional[str]]]:
    """
    ``{path: (before, after)}`` computed in memory; the tree is untouched.
    ``None`` marks an absent file.
    """
    state: Dict[str, Optional[str]] = {}
    before: Dict[str, Optional[str]] = {}
    for i, op in enumerate(patch.ops):
        if op.path not in state:
            try:
                target = resolve_in_root(root, op.path)
            except UnsafePathError as exc:
                raise PatchApplyError(f"op[{i}]: {exc}") from exc
            try:
                text = target.read_text(encoding="utf-8") if target.is_file() else None
            except (OSError, UnicodeDecodeError) as exc:
                raise PatchApplyError(f"op[{i}] {op.kind} {op.path}: {exc}") from exc
            state[op.path] = before[op.path] = text
        try:
            state[op.path] = _transform(state[op.path], op)
        except PatchApplyError as exc:
            raise PatchApplyError(f"op[{i}]: {exc}") from exc
    return {p: (before[p], state[p]) for p in state}


def summarize_patch(root: str | os.PathLike[str], patch: Patch) -> List[Dict[str, Any]]:
    """Per-path ``{path, added, removed}`` line counts of the previewed result."""
    out = []
    for path, (old, new) in preview_patch(root, patch).items():
        added = removed = 0
        for line in difflib.unified_diff(
            (old or "").splitlines(), (new or "").splitlines(), lineterm="", n=0
        ):
            if line.startswith("+++") or line.startswith("---"):
                continue
            if line.startswith("+"):
                added += 1
            elif line.startswith("-"):
                removed += 1
        out.append({"path": path, "added": added, "removed": removed})
    return out


# --------------------------------------------------------------------------- #
# Rollback support
# --------------------------------------------------------------------------- #
@dataclass(slots=True)
class PatchSnapshot:
    """Bytes of a set of paths (``None`` = absent) so they can be restored."""

    root: Path
    files: Dict[str, Optional[bytes]] = field(default_factory=dict)

    @classmethod
    def capture(cls, root: str | os.PathLike[str], paths) -> "PatchSnapshot":
        snap = cls(root=Path(root))
        for rel in paths:
            target = resolve_in_root(root, rel)
            snap.files[rel] = target.read_bytes() if target.is_file() else None
        return snap

    def restore(self) -> None:
        for rel, data in self.files.items():
            target = resolve_in_root(self.root, rel)
            if data is None:
                if target.is_file():
                    target.unlink()
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
        logger.info("patch: restored %d file(s)", len(self.files))


def ops_from_dict(obj: Mapping[str, Any]) -> PatchOp:
    """Typed op from an already-validated wire dict."""
    kind = obj["kind"]
    if kind == "add":
        return AddOp(path=obj["path"], content=obj["content"])
    if kind == "remove":
        return RemoveOp(path=obj["path"])
    if kind == "edit":
        return EditOp(path=obj["path"], find=obj["find"], replace=obj["replace"],
                      occurrences=obj.get("occurrences") or 1)
    if kind == "splice":
        return SpliceOp(path=obj["path"], start=obj["start"],
                        delete_count=obj["deleteCount"], insert=obj.get("insert") or "")
    raise ValueError(f"unknown op kind {kind!r}")
