# src/refinery/verify/boundaries.py
"""
Boundary Checker – flags import directions that run against the
repository's dominant layering.

Edges are counted between module groups (see ``refinery.repo.layers``)
using relative imports only.  For each pair of groups importing each other,
the minority direction is a violation when the majority is at least
``INVERSION_RATIO`` times larger.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import List

from refinery.repo.layers import group_edges
from refinery.repo.symbol_index import SymbolIndex

logger = logging.getLogger("refinery.verify.boundaries")

INVERSION_RATIO = 3


def find_inversions(counts: Counter, ratio: int = INVERSION_RATIO) -> List[str]:
    """*counts* maps ``(from_group, to_group)`` to the number of import edges."""
    out: List[str] = []
    seen = set()
    for (a, b) in sorted(counts):
        pair = tuple(sorted((a, b)))
        if pair in seen:
            continue
        seen.add(pair)
        x, y = pair
        xy = counts.get((x, y), 0)
        yx = counts.get((y, x), 0)
        if xy == 0 or yx == 0:
            continue
        if xy >= ratio * yx:
            out.append(f"Import inversion: {y} → {x} uncommon ({y}→{x}={yx}, {x}→{y}={xy})")
        elif yx >= ratio * xy:
            out.append(f"Import inversion: {x} → {y} uncommon ({x}→{y}={xy}, {y}→{x}={yx})")
    return out


def check_boundaries(index: SymbolIndex) -> List[str]:
    counts = group_edges(index.imports, relative_only=True)
    violations = find_inversions(counts)
    if violations:
        logger.info("boundaries: %d inversion(s)", len(violations))
    return violations
