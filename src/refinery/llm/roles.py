# src/refinery/llm/roles.py
"""
Model-backed Judge, Fixer and candidate generator.

Each role is a plain callable matching the loop's interfaces, so tests and
offline runs can pass any function instead.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Sequence

from refinery.context.packing import pack_files, read_tree_files, truncate_to_tokens
from refinery.context.prompts import (
    FIXER_PROMPT,
    FIXER_USER,
    GENERATOR_PROMPT,
    GENERATOR_USER,
    JUDGE_PROMPT,
    JUDGE_USER,
)
from refinery.dev.schema import CANDIDATE_V1, FIXER_PATCH_V1, JUDGE_VERDICT_V1
from refinery.dev.verdict import FixerInput, JudgeInput
from refinery.llm.json_call import LLMJsonCaller
from refinery.repo.brief import ProjectBrief, format_brief_for_prompt

SIGNAL_TOKENS = 6000
FILE_TOKENS = 24000


def _dump(obj: Any, max_tokens: int) -> str:
    return truncate_to_tokens(json.dumps(obj, indent=2, ensure_ascii=False), max_tokens)


class LLMJudge:
    def __init__(self, caller: LLMJsonCaller | None = None):
        self.caller = caller or LLMJsonCaller(
            schema=JUDGE_VERDICT_V1, function_name="judge_verdict", role="judge"
        )

    def __call__(self, judge_input: JudgeInput) -> Dict[str, Any]:
        user = JUDGE_USER.format(
            spec=judge_input.spec,
            brief=format_brief_for_prompt(judge_input.brief),
            signals=_dump(judge_input.signals.to_dict(), SIGNAL_TOKENS),
            patch_summary=json.dumps(list(judge_input.patch_summary)) or "[]",
            model_notes=judge_input.model_notes or "(none)",
        )
        return self.caller.ask(JUDGE_PROMPT, user)


class LLMFixer:
    def __init__(self, caller: LLMJsonCaller | None = None, *, file_tokens: int = FILE_TOKENS):
        self.caller = caller or LLMJsonCaller(
            schema=FIXER_PATCH_V1, function_name="fixer_patch", role="fixer"
        )
        self.file_tokens = file_tokens

    def __call__(self, fixer_input: FixerInput) -> Dict[str, Any]:
        verdict = fixer_input.verdict
        plan = "\n".join(f"- {s.operation} {s.file}: {s.brief}" for s in verdict.fix_plan) or "(none)"
        _, files = pack_files(
            fixer_input.files, self.file_tokens, priority=[s.file for s in verdict.fix_plan]
        )
        user = FIXER_USER.format(
            spec=fixer_input.spec,
            brief=format_brief_for_prompt(fixer_input.brief),
            diagnostics=_dump(fixer_input.diagnostics.to_dict(), SIGNAL_TOKENS),
            root_cause=verdict.explanations.root_cause,
            minimal_fix=verdict.explanations.minimal_fix,
            fix_plan=plan,
            files=files or "(none)",
        )
        return self.caller.ask(FIXER_PROMPT, user)


class LLMCandidateGenerator:
    """Asks the model ``n`` times; each answer is one candidate object."""

    def __init__(
        self,
        root: str | os.PathLike[str],
        *,
        context_paths: Sequence[str] = (),
        caller: LLMJsonCaller | None = None,
        context_tokens: int = FILE_TOKENS,
    ):
        self.root = root
        self.context_paths = list(context_paths)
        self.caller = caller or LLMJsonCaller(
            schema=CANDIDATE_V1, function_name="generated_candidate", role="generator"
        )
        self.context_tokens = context_tokens

    def __call__(self, spec: str, brief: ProjectBrief, n: int) -> List[Dict[str, Any]]:
        _, context = pack_files(read_tree_files(self.root, self.context_paths), self.context_tokens)
        brief_md = format_brief_for_prompt(brief)
        out = []
        for attempt in range(1, n + 1):
            user = GENERATOR_USER.format(
                spec=spec, brief=brief_md, context=context or "(none)", attempt=attempt
            )
            out.append(self.caller.ask(GENERATOR_PROMPT, user))
        return out
