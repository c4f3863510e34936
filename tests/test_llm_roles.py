# tests/test_llm_roles.py
"""
Prompt assembly for the model-backed Judge, Fixer and generator, plus
token-bounded context packing.

Token counting is swapped for a whitespace tokenizer so no encoding data
is downloaded; the JSON caller is replaced by a recorder.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pytest

from refinery.context import packing
from refinery.context.packing import pack_files, read_tree_files, truncate_to_tokens
from refinery.dev.verdict import FixerInput, make_judge_input, validate_judge_verdict
from refinery.llm.roles import LLMCandidateGenerator, LLMFixer, LLMJudge
from refinery.repo.brief import ProjectBrief
from refinery.verify.report import ExecutionReport


class _WordEncoding:
    def encode(self, text: str) -> List[str]:
        return text.split()

    def decode(self, ids: List[str]) -> str:
        return " ".join(ids)


@pytest.fixture(autouse=True)
def _word_tokens(monkeypatch):
    monkeypatch.setattr(packing, "_encoding", lambda: _WordEncoding())
    yield


class _Recorder:
    def __init__(self, reply: Dict[str, Any]):
        self.reply = reply
        self.prompts: List[tuple] = []

    def ask(self, system: str, user: str) -> Dict[str, Any]:
        self.prompts.append((system, user))
        return self.reply


VERDICT = validate_judge_verdict({
    "verdict": "revise",
    "scores": {"compilation": 0, "tests_functional": 1, "tests_edge": 1,
               "types": 1, "style": 1, "security": 1},
    "explanations": {"root_cause": "name error in b", "minimal_fix": "define helper"},
    "fix_plan": [{"file": "src/b.py", "operation": "edit", "brief": "define helper"}],
}).unwrap()


# --------------------------------------------------------------------------- #
# Packing
# --------------------------------------------------------------------------- #
def test_pack_files_priority_then_depth():
    files = {"a/b/c.py": "one two", "z.py": "three", "p.py": "four five six"}
    selected, _ = pack_files(files, 100, priority=["p.py"])
    assert selected == ["p.py", "z.py", "a/b/c.py"]


def test_pack_files_skips_what_does_not_fit():
    files = {"a/b/c.py": "one two", "z.py": "three", "p.py": "four five six"}
    # "--- p.py ---\nfour five six\n" is six words, "--- z.py ---\nthree\n" four
    assert pack_files(files, 6, priority=["p.py"])[0] == ["p.py"]
    selected, text = pack_files(files, 10, priority=["p.py"])
    assert selected == ["p.py", "z.py"]
    assert text == "--- p.py ---\nfour five six\n--- z.py ---\nthree\n"


def test_truncate_to_tokens():
    assert truncate_to_tokens("a b c d", 10) == "a b c d"
    assert truncate_to_tokens("a b c d", 2) == "a b\n…[truncated]"


def test_read_tree_files_drops_unreadable(tmp_path: Path):
    (tmp_path / "a.py").write_text("x = 1\n")
    assert read_tree_files(tmp_path, ["a.py", "missing.py"]) == {"a.py": "x = 1\n"}


# --------------------------------------------------------------------------- #
# Roles
# --------------------------------------------------------------------------- #
def test_judge_prompt_carries_task_brief_and_signals():
    rec = _Recorder({"verdict": "accept"})
    report = ExecutionReport(lint_errors=["[ruff] a.py: F821: undefined name (1:1)"])
    out = LLMJudge(caller=rec)(make_judge_input("add login", ProjectBrief(), report, [], "first try"))
    assert out == {"verdict": "accept"}
    system, user = rec.prompts[0]
    assert "senior code reviewer" in system
    assert "### TASK\nadd login" in user
    assert "# Project Brief" in user
    assert "F821" in user
    assert "first try" in user


def test_fixer_prompt_puts_plan_files_first():
    rec = _Recorder({"ops": []})
    files = {"src/a.py": "alpha " * 20, "src/b.py": "def broken(): return helper()"}
    fixer = LLMFixer(caller=rec, file_tokens=12)
    fixer(FixerInput("fix it", ProjectBrief(), ExecutionReport(), VERDICT, files))
    _, user = rec.prompts[0]
    assert "--- src/b.py ---" in user
    assert "--- src/a.py ---" not in user
    assert "root_cause: name error in b" in user
    assert "- edit src/b.py: define helper" in user
    assert "### DIAGNOSTICS\n{" in user


def test_generator_asks_n_times_with_context(tmp_path: Path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "a.py").write_text("existing = True\n")
    reply = {"files": [{"path": "src/new.py", "content": "x = 1\n"}]}
    rec = _Recorder(reply)
    gen = LLMCandidateGenerator(tmp_path, context_paths=["src/a.py", "missing.py"], caller=rec)
    out = gen("add a module", ProjectBrief(), 2)
    assert out == [reply, reply]
    assert "attempt 1" in rec.prompts[0][1]
    assert "attempt 2" in rec.prompts[1][1]
    assert "--- src/a.py ---" in rec.prompts[0][1]
