# src/refinery/dev/verdict.py
"""
Judge verdicts and the payloads handed to the Judge and the Fixer.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional, Tuple

from refinery.repo.brief import ProjectBrief
from refinery.verify.report import ExecutionReport

from .schema import Parsed

VERDICTS = ("accept", "revise", "reject")
FIX_OPERATIONS = ("edit", "add", "remove")
REQUIRED_SCORES = ("compilation", "tests_functional", "tests_edge", "types", "style", "security")
OPTIONAL_SCORES = ("boundaries", "schema")


@dataclass(frozen=True, slots=True)
class Scores:
    compilation: float
    tests_functional: float
    tests_edge: float
    types: float
    style: float
    security: float
    boundaries: Optional[float] = None
    schema: Optional[float] = None

    def to_dict(self) -> Dict[str, float]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True, slots=True)
class Explanations:
    root_cause: str
    minimal_fix: str


@dataclass(frozen=True, slots=True)
class FixStep:
    file: str
    operation: str
    brief: str


@dataclass(frozen=True, slots=True)
class Verdict:
    verdict: str
    scores: Scores
    explanations: Explanations
    fix_plan: Tuple[FixStep, ...] = ()

    @property
    def accepted(self) -> bool:
        return self.verdict == "accept"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict,
            "scores": self.scores.to_dict(),
            "explanations": asdict(self.explanations),
            "fix_plan": [asdict(s) for s in self.fix_plan],
        }


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def validate_judge_verdict(obj: Any) -> Parsed[Verdict]:
    """Structural check of a raw Judge object; all problems are reported."""
    if not isinstance(obj, Mapping):
        return Parsed(errors=("verdict must be an object",))
    errs: List[str] = []

    if obj.get("verdict") not in VERDICTS:
        errs.append("verdict must be accept|revise|reject")

    scores = obj.get("scores")
    if not isinstance(scores, Mapping):
        errs.append("scores required")
    else:
        for k in REQUIRED_SCORES:
            if not _is_number(scores.get(k)) or not 0 <= scores[k] <= 1:
                errs.append(f"scores.{k} must be number 0..1")
        for k in OPTIONAL_SCORES:
            if k in scores and scores[k] is not None and (
                not _is_number(scores[k]) or not 0 <= scores[k] <= 1
            ):
                errs.append(f"scores.{k} must be number 0..1")

    ex = obj.get("explanations")
    if (not isinstance(ex, Mapping)
            or not isinstance(ex.get("root_cause"), str)
            or not isinstance(ex.get("minimal_fix"), str)):
        errs.append("explanations.root_cause & minimal_fix required")

    plan = obj.get("fix_plan")
    if not isinstance(plan, list):
        errs.append("fix_plan must be an array")
    else:
        for i, fp in enumerate(plan):
            if (not isinstance(fp, Mapping)
                    or not isinstance(fp.get("file"), str)
                    or fp.get("operation") not in FIX_OPERATIONS
                    or not isinstance(fp.get("brief"), str)):
                errs.append(f"fix_plan[{i}] requires {{file, operation, brief}}")

    if errs:
        return Parsed(errors=tuple(errs))

    return Parsed(value=Verdict(
        verdict=obj["verdict"],
        scores=Scores(
            **{k: float(scores[k]) for k in REQUIRED_SCORES},
            **{k: float(scores[k]) for k in OPTIONAL_SCORES if scores.get(k) is not None},
        ),
        explanations=Explanations(ex["root_cause"], ex["minimal_fix"]),
        fix_plan=tuple(FixStep(fp["file"], fp["operation"], fp["brief"]) for fp in plan),
    ))


# --------------------------------------------------------------------------- #
# Role inputs
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class JudgeInput:
    spec: str
    brief: ProjectBrief
    signals: ExecutionReport
    patch_summary: Tuple[Dict[str, Any], ...] = ()
    model_notes: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spec": self.spec,
            "brief": self.brief.to_dict(),
            "signals": self.signals.to_dict(),
            "patchSummary": list(self.patch_summary),
            "modelNotes": self.model_notes,
        }


def make_judge_input(
    spec: str,
    brief: ProjectBrief,
    report: ExecutionReport,
    patch_summary: Optional[List[Dict[str, Any]]] = None,
    model_notes: Optional[str] = None,
) -> JudgeInput:
    return JudgeInput(
        spec=spec,
        brief=brief,
        signals=report,
        patch_summary=tuple(patch_summary or ()),
        model_notes=model_notes or "",
    )


@dataclass(frozen=True, slots=True)
class FixerInput:
    spec: str
    brief: ProjectBrief
    diagnostics: ExecutionReport
    verdict: Verdict
    files: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "spec": self.spec,
            "brief": self.brief.to_dict(),
            "diagnostics": self.diagnostics.to_dict(),
            "fix_plan": [asdict(s) for s in self.verdict.fix_plan],
            "explanations": asdict(self.verdict.explanations),
            "files": dict(self.files),
        }
