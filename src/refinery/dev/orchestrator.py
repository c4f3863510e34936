# src/refinery/dev/orchestrator.py
"""
Refinery RefinementLoop
-----------------------

Drives one task from competing candidates to a judged result:

    generate → evaluate (one temp tree per candidate) → score → tournament
      → write winner to the repo → verify → Judge
      → [Fixer patch → validate → size guard → edit constraints → apply
         → verify → Judge] × up to ``max_iters``

Every state move goes through :class:`LoopStateMachine`; when a
:class:`RunRecord` is configured each move is persisted.  The caller always
receives a terminal :class:`RefinementOutcome`: protocol, guard, constraint
and apply failures, and exceptions raised by the Judge, Fixer or generator,
end the run as ``exhausted`` with ``stage`` and ``error`` filled in.
A failed patch application is rolled back before returning.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from refinery.config import RefineryConfig
from refinery.repo.brief import ProjectBrief, build_project_brief
from refinery.repo.probe import Capabilities, detect_capabilities
from refinery.repo.symbol_index import build_symbol_index
from refinery.selection.score import ConventionScore, score_candidate
from refinery.selection.tournament import tournament_select
from refinery.verify.dep_cache import DependencyCache
from refinery.verify.pipeline import ExecutionPipeline, PipelineCancelled, write_candidate
from refinery.verify.report import ExecutionReport

from .candidate import Candidate, CandidateFile, parse_candidate
from .constraints import EditConstraints, check_edit_constraints, errors_only
from .patch import (
    Patch,
    GUARD_ERRORS,
    PatchApplyError,
    PatchGuardError,
    PatchSnapshot,
    RemoveOp,
    apply_patch,
    diff_size_guard,
    preview_patch,
    summarize_patch,
    validate_fixer_patch,
)
from .record import RunRecord, RunRecordError
from .schema import ProtocolError
from .states import LoopState, LoopStateMachine, enforce_state
from .verdict import FixerInput, Verdict, make_judge_input, validate_judge_verdict

logger = logging.getLogger("refinery.dev.orchestrator")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(message)s"))
    logger.addHandler(h)
logger.setLevel(logging.INFO)

Judge = Callable[[Any], Mapping[str, Any]]
Fixer = Callable[[FixerInput], Mapping[str, Any]]
Generator = Callable[[str, ProjectBrief, int], Sequence[Any]]

ACCEPTED = "accepted"
EXHAUSTED = "exhausted"


class ExternalCallError(RuntimeError):
    """The Judge, Fixer or generator callable raised instead of replying."""


class ConstraintViolationError(RuntimeError):
    """Candidate or patch touches files it may not, or breaks public names."""

    def __init__(self, violations):
        self.violations = list(violations)
        super().__init__("; ".join(str(v) for v in self.violations))


# --------------------------------------------------------------------------- #
# Outcome
# --------------------------------------------------------------------------- #
@dataclass(slots=True)
class RefinementOutcome:
    status: str
    stop_reason: str
    iterations: int = 0
    verdict: Optional[Verdict] = None
    report: Optional[ExecutionReport] = None
    score: Optional[ConventionScore] = None
    winner_index: Optional[int] = None
    stage: Optional[str] = None
    error: Optional[str] = None
    history: List[Dict[str, str]] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.status == ACCEPTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "stop_reason": self.stop_reason,
            "iterations": self.iterations,
            "verdict": self.verdict.to_dict() if self.verdict else None,
            "report": self.report.to_dict() if self.report else None,
            "score": self.score.to_dict() if self.score else None,
            "winner_index": self.winner_index,
            "stage": self.stage,
            "error": self.error,
            "history": list(self.history),
        }


# --------------------------------------------------------------------------- #
# Loop
# --------------------------------------------------------------------------- #
class RefinementLoop:
    def __init__(
        self,
        root: str | os.PathLike[str],
        *,
        judge: Judge,
        fixer: Fixer,
        generator: Generator | None = None,
        pipeline: ExecutionPipeline | None = None,
        config: RefineryConfig | None = None,
        constraints: EditConstraints | None = None,
        record: RunRecord | None = None,
        cancel: threading.Event | None = None,
    ):
        self.root = Path(root)
        self.judge = judge
        self.fixer = fixer
        self.generator = generator
        self.config = config or RefineryConfig()
        self.cancel = cancel or threading.Event()
        # a cache opened here is owned by the loop and released by close()
        self._own_cache: DependencyCache | None = None
        if pipeline is None:
            if self.config.cache_dir:
                self._own_cache = DependencyCache(self.config.cache_dir).open()
            pipeline = ExecutionPipeline(
                options=self.config.pipeline_options(), dep_cache=self._own_cache, cancel=self.cancel
            )
        self.pipeline = pipeline
        self.constraints = constraints or self.config.edit_constraints()
        if record is None and self.config.record_file:
            record = RunRecord(self.config.record_file)
        self.record = record

        self._machine = LoopStateMachine()
        self._run_id = ""

    def close(self) -> None:
        if self._own_cache is not None:
            self._own_cache.close()
            self._own_cache = None

    def __enter__(self) -> "RefinementLoop":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------------------------------ #
    # Public entry point
    # ------------------------------------------------------------------ #
    def run(
        self,
        spec: str,
        candidates: Sequence[Any] | None = None,
        *,
        n: int = 3,
        run_id: str | None = None,
    ) -> RefinementOutcome:
        """
        Refine *candidates* (or ``n`` from the generator) against *spec*
        until the Judge accepts or the iteration budget runs out.
        """
        self._machine = LoopStateMachine(on_transition=self._persist_transition)
        self._run_id = run_id or uuid.uuid4().hex
        out = RefinementOutcome(status=EXHAUSTED, stop_reason="")
        stage = "generate"
        try:
            caps = detect_capabilities(self.root)
            index = build_symbol_index(self.root, self.config.index_options())
            brief = build_project_brief(self.root, caps=caps, index=index)
            pool = self._collect_candidates(spec, brief, candidates, n)

            stage = "constraints"
            eligible = self._eligible(pool)

            stage = "evaluate"
            winner_idx, winner = self._score_candidates(eligible, brief, caps, out)
            out.winner_index = winner_idx

            stage = "verify"
            write_candidate(self.root, winner)
            out.report = self.pipeline.run(self.root, caps)
            tracked = [f.path for f in winner.files]

            stage = "judge"
            out.verdict = self._judge(spec, brief, out.report, winner.notes, ())

            rejected_fix_used = False
            while True:
                verdict = out.verdict
                if verdict.accepted:
                    self._machine.advance(LoopState.ACCEPTED, "accept")
                    out.status, out.stop_reason = ACCEPTED, "accepted"
                    break
                if verdict.verdict == "reject":
                    if not self.config.fix_on_reject or rejected_fix_used:
                        return self._exhaust(out, "rejected")
                    rejected_fix_used = True
                if out.iterations >= self.config.max_iters:
                    return self._exhaust(out, "max_iters")
                if self.cancel.is_set():
                    return self._exhaust(out, "cancelled")

                out.iterations += 1
                logger.info("refine: iteration %d/%d (%s)",
                            out.iterations, self.config.max_iters, verdict.verdict)

                stage = "fix"
                patch = self._request_patch(spec, brief, out.report, verdict, tracked)

                stage = "apply"
                summary = self._apply_and_verify(patch, caps, out)
                tracked = self._track(tracked, patch)
                out.score = score_candidate(self._snapshot_candidate(tracked), brief,
                                            out.report, self.root)
                self._note_iteration(out, verdict, summary)

                stage = "judge"
                out.verdict = self._judge(spec, brief, out.report, winner.notes, summary)

        except PipelineCancelled as exc:
            return self._exhaust(out, "cancelled", stage, str(exc))
        except ProtocolError as exc:
            return self._exhaust(out, "protocol_error", stage, str(exc))
        except PatchGuardError as exc:
            return self._exhaust(out, "patch_too_large", "guard", str(exc))
        except ConstraintViolationError as exc:
            return self._exhaust(out, "constraint_violation", "constraints", str(exc))
        except PatchApplyError as exc:
            return self._exhaust(out, "apply_failed", "apply", str(exc))
        except ExternalCallError as exc:
            return self._exhaust(out, "external_error", stage, str(exc))

        out.history = self._machine.history_dicts()
        logger.info("refine: accepted after %d iteration(s)", out.iterations)
        return out

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #
    def _collect_candidates(
        self, spec: str, brief: ProjectBrief, candidates: Sequence[Any] | None, n: int
    ) -> List[Candidate]:
        if candidates is None:
            if self.generator is None:
                raise ProtocolError("no candidates given and no generator configured")
            candidates = _call_external("generator", self.generator, spec, brief, n)
        pool: List[Candidate] = []
        for i, raw in enumerate(candidates):
            parsed = parse_candidate(raw)
            if not parsed.ok:
                raise ProtocolError(f"candidate[{i}] invalid: " + "; ".join(parsed.errors))
            pool.append(parsed.unwrap())
        if not pool:
            raise ProtocolError("generator returned no candidates")
        return pool

    def _eligible(self, pool: List[Candidate]) -> List[Tuple[int, Candidate]]:
        """Candidates free of constraint errors, with their original index."""
        keep: List[Tuple[int, Candidate]] = []
        last: List = []
        for i, cand in enumerate(pool):
            errs = errors_only(check_edit_constraints(
                self.root, cand.all_files(), self.constraints, self.config.enforce_minimal_diffs
            ))
            if errs:
                logger.warning("refine: candidate %d dropped: %s", i, "; ".join(map(str, errs)))
                last = errs
                continue
            keep.append((i, cand))
        if not keep:
            raise ConstraintViolationError(last)
        return keep

    @enforce_state(LoopState.GENERATED, mark=LoopState.SCORED)
    def _score_candidates(
        self,
        eligible: List[Tuple[int, Candidate]],
        brief: ProjectBrief,
        caps: Capabilities,
        out: RefinementOutcome,
    ) -> Tuple[int, Candidate]:
        cands = [c for _, c in eligible]
        reports = self.pipeline.evaluate_candidates(self.root, cands, caps)
        scores = [score_candidate(c, brief, r, self.root) for c, r in zip(cands, reports)]
        result = tournament_select(scores, k=self.config.tournament_k)
        out.score = result.score
        idx, winner = eligible[result.winner_index]
        logger.info("refine: winner candidate %d (total %.3f of %d)", idx, result.score.total, len(scores))
        return idx, winner

    @enforce_state(LoopState.SCORED, LoopState.RESCORED, mark=LoopState.JUDGED)
    def _judge(
        self,
        spec: str,
        brief: ProjectBrief,
        report: ExecutionReport,
        notes: str,
        summary: Sequence[Dict[str, Any]],
    ) -> Verdict:
        raw = _call_external("judge", self.judge, make_judge_input(spec, brief, report, list(summary), notes))
        parsed = validate_judge_verdict(raw)
        if not parsed.ok:
            raise ProtocolError("Judge verdict invalid: " + "; ".join(parsed.errors))
        logger.info("refine: verdict %s", parsed.value.verdict)
        return parsed.unwrap()

    @enforce_state(LoopState.JUDGED, mark=LoopState.FIXING)
    def _request_patch(
        self,
        spec: str,
        brief: ProjectBrief,
        report: ExecutionReport,
        verdict: Verdict,
        tracked: List[str],
    ) -> Patch:
        paths = list(dict.fromkeys([s.file for s in verdict.fix_plan] + tracked))
        raw = _call_external("fixer", self.fixer, FixerInput(spec, brief, report, verdict, self._read_files(paths)))
        parsed = validate_fixer_patch(raw, self.config.patch_limits())
        if not parsed.ok:
            if all(e.startswith(GUARD_ERRORS) for e in parsed.errors):
                raise PatchGuardError("; ".join(parsed.errors))
            raise ProtocolError("Fixer patch invalid: " + "; ".join(parsed.errors))
        return parsed.unwrap()

    @enforce_state(LoopState.FIXING, mark=LoopState.RESCORED)
    def _apply_and_verify(
        self, patch: Patch, caps: Capabilities, out: RefinementOutcome
    ) -> List[Dict[str, Any]]:
        diff_size_guard(patch, self.config.patch_limits())

        after = preview_patch(self.root, patch)
        violations = check_edit_constraints(
            self.root,
            [CandidateFile(p, new or "") for p, (_, new) in after.items()],
            self.constraints,
            self.config.enforce_minimal_diffs,
        )
        for v in violations:
            if v.severity != "error":
                logger.warning("refine: %s", v)
        if errors_only(violations):
            raise ConstraintViolationError(errors_only(violations))

        summary = summarize_patch(self.root, patch)
        snapshot = PatchSnapshot.capture(self.root, patch.paths())
        try:
            apply_patch(self.root, patch)
        except PatchApplyError:
            snapshot.restore()
            raise
        out.report = self.pipeline.run(self.root, caps)
        return summary

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _exhaust(
        self,
        out: RefinementOutcome,
        reason: str,
        stage: str | None = None,
        error: str | None = None,
    ) -> RefinementOutcome:
        if not self._machine.done:
            self._machine.advance(LoopState.EXHAUSTED, reason)
        out.status, out.stop_reason = EXHAUSTED, reason
        out.stage, out.error = stage, error
        out.history = self._machine.history_dicts()
        if error:
            logger.error("refine: stopped at %s: %s", stage, error)
        else:
            logger.info("refine: exhausted (%s) after %d iteration(s)", reason, out.iterations)
        return out

    @staticmethod
    def _track(tracked: List[str], patch: Patch) -> List[str]:
        out = list(tracked)
        for op in patch.ops:
            if isinstance(op, RemoveOp):
                if op.path in out:
                    out.remove(op.path)
            elif op.path not in out:
                out.append(op.path)
        return out

    def _read_files(self, paths: Sequence[str]) -> Dict[str, str]:
        files: Dict[str, str] = {}
        for rel in paths:
            target = self.root / rel
            try:
                if target.is_file():
                    files[rel] = target.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.debug("refine: cannot read %s: %s", rel, exc)
        return files

    def _snapshot_candidate(self, tracked: Sequence[str]) -> Candidate:
        return Candidate(files=tuple(
            CandidateFile(p, text) for p, text in self._read_files(tracked).items()
        ))

    def _persist_transition(self, prev: LoopState, target: LoopState, note: str) -> None:
        if self.record is None:
            return
        try:
            self.record.save(self._run_id, target.value, {"from": prev.value, "note": note})
        except (RunRecordError, OSError) as exc:
            logger.error("refine: record error: %s", exc)

    def _note_iteration(
        self, out: RefinementOutcome, verdict: Verdict, summary: List[Dict[str, Any]]
    ) -> None:
        if self.record is None:
            return
        try:
            self.record.append_iteration(self._run_id, {
                "iteration": out.iterations,
                "verdict": verdict.to_dict(),
                "patch_summary": summary,
                "compiled": out.report.compiled if out.report else None,
            })
        except (RunRecordError, OSError) as exc:
            logger.error("refine: record error: %s", exc)


def _call_external(role: str, func: Callable[..., Any], *args: Any) -> Any:
    """Invoke an external role; anything but a ProtocolError becomes ExternalCallError."""
    try:
        return func(*args)
    except ProtocolError:
        raise
    except Exception as exc:
        raise ExternalCallError(f"{role} call failed: {type(exc).__name__}: {exc}") from exc
