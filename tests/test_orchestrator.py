# tests/test_orchestrator.py
"""
End-to-end behaviour of RefinementLoop with every external piece stubbed:

• the ExecutionPipeline is replaced by `_StubPipeline` (no tools run)
• Judge and Fixer are `_Scripted` callables replaying canned objects

The loop must always hand back a terminal outcome and never leave a
half-applied patch in the repository.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, List

import pytest

from refinery.config import RefineryConfig
from refinery.dev.orchestrator import ACCEPTED, EXHAUSTED, RefinementLoop
from refinery.dev.record import RunRecord
from refinery.verify.dep_cache import DependencyCacheError
from refinery.verify.report import ExecutionReport


# --------------------------------------------------------------------------- #
# Test doubles
# --------------------------------------------------------------------------- #
class _StubPipeline:
    def __init__(self, candidate_reports: List[ExecutionReport] | None = None):
        self.candidate_reports = candidate_reports
        self.runs = 0

    def run(self, root, caps=None) -> ExecutionReport:
        self.runs += 1
        return ExecutionReport()

    def evaluate_candidates(self, root, cands, caps=None) -> List[ExecutionReport]:
        if self.candidate_reports is None:
            return [ExecutionReport() for _ in cands]
        return list(self.candidate_reports[: len(cands)])


class _Scripted:
    """Return the queued replies in order; the last one repeats."""

    def __init__(self, *replies: Any):
        self.replies = list(replies)
        self.inputs: List[Any] = []

    def __call__(self, payload):
        self.inputs.append(payload)
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]


def _verdict(kind: str) -> Dict[str, Any]:
    return {
        "verdict": kind,
        "scores": {"compilation": 1, "tests_functional": 1, "tests_edge": 1,
                   "types": 1, "style": 1, "security": 1},
        "explanations": {"root_cause": "n/a", "minimal_fix": "n/a"},
        "fix_plan": [],
    }


def _candidate(path: str, content: str = "value_one = 1\n") -> Dict[str, Any]:
    return {"files": [{"path": path, "content": content}], "notes": "draft"}


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    root = tmp_path / "repo"
    (root / "src").mkdir(parents=True)
    (root / "src" / "app.py").write_text("def handler():\n    return 1\n")
    return root


def _loop(repo: Path, judge, fixer, **cfg) -> RefinementLoop:
    return RefinementLoop(
        repo,
        judge=judge,
        fixer=fixer,
        pipeline=_StubPipeline(),
        config=RefineryConfig(**cfg),
    )


# --------------------------------------------------------------------------- #
# Acceptance / exhaustion
# --------------------------------------------------------------------------- #
def test_accepts_best_candidate_and_writes_it(repo: Path):
    judge, fixer = _Scripted(_verdict("accept")), _Scripted({"ops": []})
    pipeline = _StubPipeline([
        ExecutionReport(lint_errors=["[ruff] src/feature_a.py: E1: bad (1:1)"]),
        ExecutionReport(),
    ])
    loop = RefinementLoop(repo, judge=judge, fixer=fixer, pipeline=pipeline)

    out = loop.run("add a feature", [_candidate("src/feature_a.py"), _candidate("src/feature_b.py")])

    assert out.status == ACCEPTED and out.accepted
    assert out.stop_reason == "accepted"
    assert out.winner_index == 1
    assert out.iterations == 0
    assert (repo / "src" / "feature_b.py").read_text() == "value_one = 1\n"
    assert not (repo / "src" / "feature_a.py").exists()
    assert [h["to"] for h in out.history] == ["scored", "judged", "accepted"]
    assert judge.inputs[0].model_notes == "draft"
    assert fixer.inputs == []


def test_zero_iteration_budget_never_calls_fixer(repo: Path):
    fixer = _Scripted({"ops": []})
    out = _loop(repo, _Scripted(_verdict("revise")), fixer, max_iters=0).run(
        "task", [_candidate("src/feature.py")]
    )
    assert out.status == EXHAUSTED
    assert out.stop_reason == "max_iters"
    assert out.stage is None and out.error is None
    assert fixer.inputs == []


def test_revise_until_budget_runs_out(repo: Path):
    fixer = _Scripted({"ops": []})
    out = _loop(repo, _Scripted(_verdict("revise")), fixer, max_iters=2).run(
        "task", [_candidate("src/feature.py")]
    )
    assert out.stop_reason == "max_iters"
    assert out.iterations == 2
    assert len(fixer.inputs) == 2
    assert out.verdict.verdict == "revise"


def test_revise_then_accept_applies_patch(repo: Path):
    judge = _Scripted(_verdict("revise"), _verdict("accept"))
    fixer = _Scripted({"ops": [
        {"kind": "edit", "path": "src/feature.py", "find": "value_one = 1", "replace": "value_one = 2"},
    ]})
    out = _loop(repo, judge, fixer).run("task", [_candidate("src/feature.py")])

    assert out.status == ACCEPTED
    assert out.iterations == 1
    assert (repo / "src" / "feature.py").read_text() == "value_one = 2\n"
    assert fixer.inputs[0].files["src/feature.py"] == "value_one = 1\n"
    assert judge.inputs[1].patch_summary[0] == {"path": "src/feature.py", "added": 1, "removed": 1}
    assert [h["to"] for h in out.history] == [
        "scored", "judged", "fixing", "rescored", "judged", "accepted",
    ]


def test_reject_stops_without_fix_by_default(repo: Path):
    fixer = _Scripted({"ops": []})
    out = _loop(repo, _Scripted(_verdict("reject")), fixer).run("task", [_candidate("src/feature.py")])
    assert out.stop_reason == "rejected"
    assert fixer.inputs == []


def test_reject_gets_one_fix_when_enabled(repo: Path):
    judge = _Scripted(_verdict("reject"), _verdict("reject"))
    fixer = _Scripted({"ops": []})
    out = _loop(repo, judge, fixer, fix_on_reject=True).run("task", [_candidate("src/feature.py")])
    assert out.stop_reason == "rejected"
    assert out.iterations == 1
    assert len(fixer.inputs) == 1


def test_cancel_before_fixing(repo: Path):
    cancel = threading.Event()
    cancel.set()
    fixer = _Scripted({"ops": []})
    loop = RefinementLoop(repo, judge=_Scripted(_verdict("revise")), fixer=fixer,
                          pipeline=_StubPipeline(), cancel=cancel)
    out = loop.run("task", [_candidate("src/feature.py")])
    assert out.stop_reason == "cancelled"
    assert fixer.inputs == []


# --------------------------------------------------------------------------- #
# Failures end the run with a stage and an error
# --------------------------------------------------------------------------- #
def test_invalid_judge_output_is_protocol_error(repo: Path):
    out = _loop(repo, _Scripted({"verdict": "maybe"}), _Scripted({"ops": []})).run(
        "task", [_candidate("src/feature.py")]
    )
    assert out.status == EXHAUSTED
    assert out.stop_reason == "protocol_error"
    assert out.stage == "judge"
    assert out.error.startswith("Judge verdict invalid")


def test_invalid_fixer_output_is_protocol_error(repo: Path):
    out = _loop(repo, _Scripted(_verdict("revise")), _Scripted({"ops": [{"kind": "zap", "path": "x"}]})).run(
        "task", [_candidate("src/feature.py")]
    )
    assert out.stop_reason == "protocol_error"
    assert out.stage == "fix"
    assert "invalid kind zap" in out.error


def test_invalid_candidate_is_protocol_error(repo: Path):
    out = _loop(repo, _Scripted(_verdict("accept")), _Scripted({"ops": []})).run("task", [{"files": []}])
    assert out.stop_reason == "protocol_error"
    assert out.stage == "generate"


def _raises(exc: Exception):
    def _call(*_args):
        raise exc
    return _call


@pytest.mark.parametrize(
    "judge, fixer, generator, stage",
    [
        (_raises(RuntimeError("judge backend unreachable")), _Scripted({"ops": []}), None, "judge"),
        (_Scripted(_verdict("revise")), _raises(ConnectionError("reset by peer")), None, "fix"),
        (_Scripted(_verdict("accept")), _Scripted({"ops": []}), _raises(TimeoutError("slow")), "generate"),
    ],
)
def test_raising_roles_end_the_run(repo: Path, judge, fixer, generator, stage):
    loop = RefinementLoop(repo, judge=judge, fixer=fixer, generator=generator,
                          pipeline=_StubPipeline())
    out = loop.run("task", None if generator else [_candidate("src/feature.py")])
    assert out.status == EXHAUSTED
    assert out.stop_reason == "external_error"
    assert out.stage == stage
    assert "call failed" in out.error
    assert out.history[-1]["to"] == "exhausted"


def test_oversized_patch_is_guarded(repo: Path):
    fixer = _Scripted({"ops": [{"kind": "add", "path": "src/big.py", "content": "x" * 64}]})
    out = _loop(repo, _Scripted(_verdict("revise")), fixer, max_patch_bytes=16).run(
        "task", [_candidate("src/feature.py")]
    )
    assert out.stop_reason == "patch_too_large"
    assert out.stage == "guard"
    assert not (repo / "src" / "big.py").exists()


def test_read_only_candidates_are_dropped(repo: Path):
    out = _loop(repo, _Scripted(_verdict("accept")), _Scripted({"ops": []})).run(
        "task", [_candidate("dist/bundle.py")]
    )
    assert out.stop_reason == "constraint_violation"
    assert out.stage == "constraints"
    assert "read-only" in out.error
    assert not (repo / "dist").exists()


def test_read_only_candidate_skipped_when_another_is_clean(repo: Path):
    out = _loop(repo, _Scripted(_verdict("accept")), _Scripted({"ops": []})).run(
        "task", [_candidate("dist/bundle.py"), _candidate("src/feature.py")]
    )
    assert out.status == ACCEPTED
    assert out.winner_index == 1


def test_failed_apply_is_rolled_back(repo: Path):
    fixer = _Scripted({"ops": [
        {"kind": "edit", "path": "src/feature.py", "find": "value_one = 1", "replace": "value_one = 9"},
        {"kind": "add", "path": "src/feature.py/child.txt", "content": "x"},
    ]})
    out = _loop(repo, _Scripted(_verdict("revise")), fixer).run("task", [_candidate("src/feature.py")])
    assert out.stop_reason == "apply_failed"
    assert out.stage == "apply"
    assert (repo / "src" / "feature.py").read_text() == "value_one = 1\n"


def test_edit_on_missing_file_fails_before_writing(repo: Path):
    fixer = _Scripted({"ops": [
        {"kind": "add", "path": "src/extra.py", "content": "y = 1\n"},
        {"kind": "edit", "path": "src/missing.py", "find": "a", "replace": "b"},
    ]})
    out = _loop(repo, _Scripted(_verdict("revise")), fixer).run("task", [_candidate("src/feature.py")])
    assert out.stop_reason == "apply_failed"
    assert not (repo / "src" / "extra.py").exists()


# --------------------------------------------------------------------------- #
# Persistence
# --------------------------------------------------------------------------- #
def test_run_record_captures_transitions_and_iterations(repo: Path, tmp_path: Path):
    record = RunRecord(tmp_path / "record.json")
    loop = RefinementLoop(
        repo,
        judge=_Scripted(_verdict("revise"), _verdict("accept")),
        fixer=_Scripted({"ops": []}),
        pipeline=_StubPipeline(),
        record=record,
    )
    out = loop.run("task", [_candidate("src/feature.py")], run_id="run-1")
    assert out.accepted

    on_disk = json.loads((tmp_path / "record.json").read_text())
    run = on_disk[0]
    assert run["run_id"] == "run-1"
    assert [h["state"] for h in run["history"]][-1] == "accepted"
    assert run["history"][0]["extra"]["from"] == "generated"
    assert run["iterations"][0]["iteration"] == 1
    assert run["iterations"][0]["verdict"]["verdict"] == "revise"


def test_generator_is_used_when_no_candidates(repo: Path):
    calls = []

    def generator(spec, brief, n):
        calls.append((spec, n))
        return [_candidate("src/generated_one.py")] * n

    loop = RefinementLoop(repo, judge=_Scripted(_verdict("accept")), fixer=_Scripted({"ops": []}),
                          generator=generator, pipeline=_StubPipeline())
    out = loop.run("task", n=2)
    assert out.accepted
    assert calls == [("task", 2)]
    assert (repo / "src" / "generated_one.py").is_file()


def test_loop_releases_the_cache_it_opened(repo: Path, tmp_path: Path):
    cfg = RefineryConfig(cache_dir=str(tmp_path / "deps"))
    with RefinementLoop(repo, judge=_Scripted(_verdict("accept")), fixer=_Scripted({"ops": []}),
                        config=cfg) as loop:
        cache = loop.pipeline.dep_cache
        assert cache is not None
        assert cache.stats()["total_entries"] == 0
    with pytest.raises(DependencyCacheError, match="before open"):
        cache.prepare(repo)
