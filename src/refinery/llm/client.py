# src/refinery/llm/client.py
from __future__ import annotations

import hashlib
import logging
import os
import time
from typing import Any, Dict, List, Optional, cast

import tiktoken
from dotenv import load_dotenv
from openai import OpenAI, OpenAIError
from openai.types.chat import ChatCompletionMessageParam

from refinery.audit.llm_call_log import LLMCallLogger

# one-time env expansion
load_dotenv()

logger = logging.getLogger("refinery.llm.client")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s %(message)s"))
    logger.addHandler(h)
logger.setLevel(logging.INFO)

# role → model; each overridable with REFINERY_MODEL_<ROLE>
_DEFAULT_MODELS = {
    "generator": "gpt-4.1",
    "judge": "o4-mini",
    "fixer": "gpt-4.1",
}

STUB_REPLY = "LLM unavailable — Refinery stub-mode"


def model_for(role: str) -> Optional[str]:
    env = os.getenv(f"REFINERY_MODEL_{role.upper()}")
    return env or _DEFAULT_MODELS.get(role)


def count_tokens(messages: List[Dict[str, str]]) -> int:
    enc = tiktoken.get_encoding("o200k_base")
    return sum(len(enc.encode(m["role"])) + len(enc.encode(m["content"] or "")) for m in messages)


class LLMClient:
    """
    Central sync wrapper with:

    • stub-mode when no API key
    • optional json_mode   → OpenAI “response_format={type:json_object}”
    • optional function_spec → OpenAI “tools=[…]”
    """

    _warned_stub = False

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        default_model: Optional[str] = None,
    ):
        key = api_key or os.getenv("OPENAI_API_KEY")
        self.stub = not bool(key)
        self.api_key = key
        self.api_base = api_base or os.getenv("OPENAI_API_BASE")
        self.default_model = default_model or _DEFAULT_MODELS["generator"]
        self._client: Optional[OpenAI] = None

        if self.stub:
            if not LLMClient._warned_stub:
                logger.warning(
                    "[Refinery] LLMClient stub-mode — OPENAI_API_KEY missing; "
                    ".call() returns a canned message."
                )
                LLMClient._warned_stub = True
        else:
            try:
                self._client = OpenAI(api_key=self.api_key, base_url=self.api_base)
            except OpenAIError as exc:
                self.stub = True
                logger.warning("[Refinery] LLMClient stub-mode (auto): %s", exc)

    # ------------------------------------------------------------------ #
    def _resolve_model(self, model: Optional[str], role: Optional[str]) -> str:
        if model:
            return model
        if role:
            return model_for(role) or self.default_model
        return self.default_model

    # ------------------------------------------------------------------ #
    def call(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: Optional[str] = None,
        role: Optional[str] = None,
        system_prompt: Optional[str] = None,
        json_mode: bool = False,
        function_spec: Optional[List[Dict[str, Any]]] = None,
        **kwargs,
    ) -> str:
        if self.stub or self._client is None:
            return STUB_REPLY

        used_model = self._resolve_model(model, role)
        msgs = messages.copy()
        if system_prompt and not any(m.get("role") == "system" for m in msgs):
            msgs.insert(0, {"role": "system", "content": system_prompt})

        prompt_tokens = count_tokens(msgs)
        t0 = time.perf_counter()

        tools_arg = None
        tool_choice_arg = None
        if function_spec:
            tools_arg = [{"type": "function", "function": fs} for fs in function_spec]
            tool_choice_arg = {"type": "function", "function": {"name": function_spec[0]["name"]}}

        extra: Dict[str, Any] = dict(kwargs)
        if tools_arg:
            extra["tools"] = tools_arg
            extra["tool_choice"] = tool_choice_arg
        elif json_mode:
            # tools and response_format are mutually exclusive
            extra["response_format"] = {"type": "json_object"}

        response = self._client.chat.completions.create(  # type: ignore[call-overload]
            model=used_model,
            messages=cast(List[ChatCompletionMessageParam], msgs),
            **extra,
        )

        # In tool-call mode the answer sits in the function arguments.
        message = response.choices[0].message
        if message.content is None and message.tool_calls:
            content = message.tool_calls[0].function.arguments
        else:
            content = (message.content or "").strip()

        latency = time.perf_counter() - t0
        completion_tokens = getattr(response.usage, "completion_tokens", None)

        LLMCallLogger().log({
            "ts": time.time(),
            "role": role or "n/a",
            "model": used_model,
            "temperature": kwargs.get("temperature"),
            "prompt_tokens": prompt_tokens,
            "completion_tokens": completion_tokens,
            "latency_s": latency,
            "result_sha": hashlib.sha1(content.encode()).hexdigest(),
        })

        logger.info(
            "LLM call %s → %.2fs  prompt≈%d  completion≈%s",
            used_model,
            latency,
            prompt_tokens,
            completion_tokens,
        )
        return content


_DEFAULT_CLIENT: Optional[LLMClient] = None


# helper for callers that want the singleton
def get_default_client() -> LLMClient:
    global _DEFAULT_CLIENT
    if _DEFAULT_CLIENT is None:
        _DEFAULT_CLIENT = LLMClient()
    return _DEFAULT_CLIENT
