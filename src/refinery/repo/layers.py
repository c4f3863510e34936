# src/refinery/repo/layers.py
"""
Module-group ("layer") segment rule shared by the Project Brief builder and
the Boundary Checker.

A file's group is the first path segment under ``src/`` when the path lives
there, otherwise its top-level segment.  Root-level files belong to the
pseudo-group ``.``.  A resolved import target may name a directory
(``../domain``, ``from ..models import x``), so for targets the segment
is taken even when nothing follows it.
"""

from __future__ import annotations

import posixpath
from collections import Counter
from typing import Dict, Iterable, Optional, Set, Tuple

from .extract import ImportEdge

ROOT_GROUP = "."


def module_group(path: str, *, target: bool = False) -> str:
    parts = [p for p in path.replace("\\", "/").split("/") if p and p != "."]
    # the last segment of a file path is the file itself
    tail = 0 if target else 1
    if len(parts) <= tail:
        return ROOT_GROUP
    if parts[0] == "src":
        return parts[1] if len(parts) > 1 + tail else ROOT_GROUP
    return parts[0]


def resolve_relative(source: str, target: str) -> Optional[str]:
    """Resolve a ``./`` or ``../`` import against the importing file."""
    if not target.startswith("."):
        return None
    base = posixpath.dirname(source)
    # Python relative imports:  "..models.user" -> "../models/user"
    if not target.startswith("./") and not target.startswith("../") and target not in (".", ".."):
        dots = len(target) - len(target.lstrip("."))
        rest = target[dots:].replace(".", "/")
        target = "./" + "../" * (dots - 1) + rest
    joined = posixpath.normpath(posixpath.join(base, target))
    if joined.startswith(".."):
        return None
    return joined


def group_edges(
    edges: Iterable[ImportEdge],
    *,
    known_groups: Optional[Set[str]] = None,
    relative_only: bool = True,
) -> Counter:
    """
    Count cross-group import edges: ``{(from_group, to_group): n}``.

    Relative imports are resolved against the importing file.  When
    *relative_only* is false, absolute imports whose first dotted / slashed
    segment names a known group are counted as well.
    """
    counts: Counter = Counter()
    for edge in edges:
        resolved = resolve_relative(edge.source, edge.target)
        if resolved is not None:
            dst = module_group(resolved, target=True)
        elif relative_only or not known_groups:
            continue
        else:
            head = edge.target.replace("::", "/").replace(".", "/").split("/")[0]
            if head not in known_groups:
                continue
            dst = head
        src = module_group(edge.source)
        if src == dst:
            continue
        counts[(src, dst)] += 1
    return counts


def allowed_imports(counts: Counter) -> Dict[str, Tuple[str, ...]]:
    out: Dict[str, Set[str]] = {}
    for (src, dst), n in counts.items():
        if n > 0:
            out.setdefault(src, set()).add(dst)
    return {k: tuple(sorted(v)) for k, v in out.items()}
