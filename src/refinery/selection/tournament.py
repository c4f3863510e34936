# src/refinery/selection/tournament.py
"""
Bracket tournament over scored candidates.

Indices are grouped in chunks of ``k``; each chunk's best advances until
one remains.  Comparison key:

    total + 0.001 · exec_signals + 0.0001 · identifier_match

A later index replaces the chunk leader only on a strictly greater key, so
exact ties go to the lower index.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence

from .score import ConventionScore


@dataclass(frozen=True, slots=True)
class TournamentResult:
    winner_index: int
    score: ConventionScore
    rounds: int


def selection_key(score: ConventionScore) -> float:
    return score.total + 0.001 * score.exec_signals + 0.0001 * score.identifier_match


def tournament_select(scores: Sequence[ConventionScore], k: int = 2) -> TournamentResult:
    if not scores:
        raise ValueError("tournament_select() needs at least one score")
    if k < 2:
        raise ValueError(f"bracket size k must be >= 2 (got {k})")

    idxs: List[int] = list(range(len(scores)))
    rounds = 0
    while len(idxs) > 1:
        nxt: List[int] = []
        for start in range(0, len(idxs), k):
            chunk = idxs[start:start + k]
            best = chunk[0]
            for j in chunk[1:]:
                if selection_key(scores[j]) > selection_key(scores[best]):
                    best = j
            nxt.append(best)
        idxs = nxt
        rounds += 1
    return TournamentResult(winner_index=idxs[0], score=scores[idxs[0]], rounds=rounds)
