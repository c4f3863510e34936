# src/refinery/selection/score.py
"""
Convention score – how "repo-native" a candidate looks, blended with its
execution signals.

    identifier_match    0.6 · jaccard(identifiers, glossary) + 0.4 · casing ratio
    boundaries          1 when the report has no boundary errors, else 0
    schema_conformance  1 when the report has no schema errors, else 0
    file_pattern        neighbour file-name family heuristic
    exec_signals        1.0 clean / 0.6 tests pass only / 0.2 tests fail

    total = Σ WEIGHTS[k] · component[k]

Pure and deterministic: equal inputs give bit-identical scores.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, List

from refinery.dev.candidate import Candidate
from refinery.repo.brief import ProjectBrief, recommended_styles
from refinery.repo.naming import detect_case
from refinery.verify.report import ExecutionReport

WEIGHTS: Dict[str, float] = {
    "identifier_match": 0.35,
    "boundaries": 0.20,
    "schema_conformance": 0.15,
    "file_pattern": 0.10,
    "exec_signals": 0.20,
}

_TOKEN_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_\-]*")

NEIGHBOUR_PATTERNS = tuple(
    re.compile(p, re.I)
    for p in (r"Service\.", r"Controller\.", r"Repository\.", r"\.spec\.", r"\.test\.", r"^test_", r"\.dto\.")
)


@dataclass(frozen=True, slots=True)
class ConventionScore:
    identifier_match: float
    boundaries: float
    schema_conformance: float
    file_pattern: float
    exec_signals: float
    total: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


def score_candidate(
    candidate: Candidate,
    brief: ProjectBrief,
    report: ExecutionReport,
    repo_root: str | os.PathLike[str] | None = None,
) -> ConventionScore:
    text = "\n".join(f.content for f in candidate.files)
    idents = {t for t in _TOKEN_RE.findall(text) if len(t) > 2}
    glossary = set(brief.glossary)

    overlap = jaccard(idents, glossary)
    recs = set(recommended_styles(brief))
    casing = (sum(1 for t in idents if detect_case(t) in recs) / len(idents)) if idents else 1.0
    identifier_match = 0.6 * overlap + 0.4 * casing

    boundaries = 0.0 if report.boundary_errors else 1.0
    schema_conformance = 0.0 if report.schema_errors else 1.0
    file_pattern = neighbour_pattern_score(candidate, repo_root)
    exec_signals = exec_signal(report)

    parts = {
        "identifier_match": identifier_match,
        "boundaries": boundaries,
        "schema_conformance": schema_conformance,
        "file_pattern": file_pattern,
        "exec_signals": exec_signals,
    }
    total = sum(WEIGHTS[k] * parts[k] for k in WEIGHTS)
    return ConventionScore(total=total, **parts)


def exec_signal(report: ExecutionReport) -> float:
    tests_clean = report.test.failed == 0
    if tests_clean and not report.lint_errors and not report.type_errors:
        return 1.0
    return 0.6 if tests_clean else 0.2


def jaccard(a: set, b: set) -> float:
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def neighbour_pattern_score(candidate: Candidate, repo_root: str | os.PathLike[str] | None) -> float:
    """
    1.0 when a file and some sibling share a naming family (``*Service.*``,
    ``*.spec.*``, ``test_*`` ...), 0.7 otherwise, 0.8 when the directory
    cannot be listed.  Neutral 1.0 without a repository root.
    """
    if repo_root is None:
        return 1.0
    scores: List[float] = []
    for f in candidate.files:
        target = Path(repo_root) / f.path
        try:
            siblings = [e.name for e in os.scandir(target.parent) if e.is_file()]
        except OSError:
            scores.append(0.8)
            continue
        base = target.name
        hit = _has_pattern(base) and any(_has_pattern(n) for n in siblings if n != base)
        scores.append(1.0 if hit else 0.7)
    return sum(scores) / len(scores) if scores else 1.0


def _has_pattern(name: str) -> bool:
    return any(p.search(name) for p in NEIGHBOUR_PATTERNS)
