# src/refinery/repo/symbol_index.py
"""
Lightweight repository symbol index.

Walks the tree depth-first in sorted order, collects identifier frequencies
and raw import edges for source files.  Bounded by ``max_files`` and
``max_per_file_ids`` so very large repositories stay cheap to index.
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from .extract import ImportEdge, extract_identifiers, extract_imports

logger = logging.getLogger("refinery.repo.symbol_index")

DEFAULT_EXTS: FrozenSet[str] = frozenset(
    {".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".py", ".go", ".rs", ".java", ".kt"}
)
SKIP_DIRS: FrozenSet[str] = frozenset(
    {"node_modules", ".git", "dist", "build", ".venv", "venv", "target", "out",
     ".next", ".turbo", "coverage", "__pycache__", ".mypy_cache", ".pytest_cache"}
)
DEFAULT_MAX_FILES = 5000
DEFAULT_MAX_PER_FILE_IDS = 200
_MAX_FILE_BYTES = 1_000_000


@dataclass(frozen=True, slots=True)
class IndexOptions:
    exts: FrozenSet[str] = DEFAULT_EXTS
    max_files: int = DEFAULT_MAX_FILES
    max_per_file_ids: int = DEFAULT_MAX_PER_FILE_IDS
    exclude: FrozenSet[str] = SKIP_DIRS


@dataclass(slots=True)
class SymbolIndex:
    files: List[str] = field(default_factory=list)
    identifiers: Counter = field(default_factory=Counter)
    by_file: Dict[str, List[str]] = field(default_factory=dict)
    imports: List[ImportEdge] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "files": list(self.files),
            "identifiers": dict(self.identifiers),
            "byFile": {k: list(v) for k, v in self.by_file.items()},
            "imports": [e.to_dict() for e in self.imports],
        }


# --------------------------------------------------------------------------- #
# Public API
# --------------------------------------------------------------------------- #
def build_symbol_index(
    root: str | os.PathLike[str],
    options: IndexOptions | None = None,
) -> SymbolIndex:
    opts = options or IndexOptions()
    root_path = Path(root)
    index = SymbolIndex()
    if not root_path.is_dir():
        return index

    for rel, full in _walk(root_path, opts):
        if len(index.files) >= opts.max_files:
            logger.debug("symbol index: max_files=%d reached", opts.max_files)
            break
        try:
            if full.stat().st_size > _MAX_FILE_BYTES:
                continue
            raw = full.read_bytes()
            if b"\x00" in raw[:4096]:
                continue
            text = raw.decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("symbol index: skipping %s (%s)", rel, exc)
            continue

        idents = extract_identifiers(text)[: opts.max_per_file_ids]
        index.files.append(rel)
        index.by_file[rel] = idents
        index.identifiers.update(idents)
        index.imports.extend(extract_imports(text, source=rel))

    logger.debug(
        "symbol index: %d files, %d identifiers, %d imports",
        len(index.files), len(index.identifiers), len(index.imports),
    )
    return index


def top_identifiers(
    index: SymbolIndex,
    *,
    limit: int = 100,
    min_len: int = 3,
    by_dir: Optional[Iterable[str]] = None,
) -> List[str]:
    """
    Rank identifiers by frequency (alphabetical on ties).

    When *by_dir* is given, only files whose path contains one of those
    fragments contribute, provided at least one such file exists.
    """
    counts: Counter = index.identifiers
    if by_dir:
        frags = tuple(by_dir)
        scoped = [f for f in index.files if any(fr in "/" + f for fr in frags)]
        if scoped:
            counts = Counter()
            for f in scoped:
                counts.update(index.by_file.get(f, ()))
    ranked: List[Tuple[str, int]] = sorted(
        ((k, v) for k, v in counts.items() if len(k) >= min_len),
        key=lambda kv: (-kv[1], kv[0]),
    )
    return [k for k, _ in ranked[:limit]]


# --------------------------------------------------------------------------- #
# Internal helpers
# --------------------------------------------------------------------------- #
def _walk(root: Path, opts: IndexOptions):
    stack: List[Path] = [root]
    while stack:
        d = stack.pop()
        try:
            entries = sorted(os.scandir(d), key=lambda e: e.name)
        except OSError as exc:
            logger.debug("symbol index: cannot list %s (%s)", d, exc)
            continue
        subdirs: List[Path] = []
        for e in entries:
            if e.is_dir(follow_symlinks=False):
                if e.name not in opts.exclude:
                    subdirs.append(Path(e.path))
            elif e.is_file(follow_symlinks=False):
                full = Path(e.path)
                if full.suffix in opts.exts:
                    yield full.relative_to(root).as_posix(), full
        # reversed so the alphabetically-first directory is visited next
        stack.extend(reversed(subdirs))
