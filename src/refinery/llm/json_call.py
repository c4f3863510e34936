# src/refinery/llm/json_call.py
"""
LLMJsonCaller – ask the model for strictly-typed JSON via function-calling.
Retries automatically on validation failure.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Dict, List

import jsonschema

from refinery.dev.schema import ProtocolError
from refinery.llm.client import LLMClient, get_default_client

logger = logging.getLogger("refinery.llm.json_call")
if not logger.handlers:
    logger.addHandler(logging.StreamHandler())
logger.setLevel(logging.INFO)

_MAX_RETRIES = 3
_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.I)


class LLMJsonCaller:
    def __init__(
        self,
        *,
        schema: Dict[str, Any],
        function_name: str,
        description: str = "",
        role: str | None = None,
        model: str | None = None,
        client: LLMClient | None = None,
        retry_delay: float = 1.0,
    ):
        self.schema = schema
        self.role = role
        self.model = model
        self.llm = client or get_default_client()
        self.retry_delay = retry_delay
        self.func_spec = [
            {
                "name": function_name,
                "description": description or f"Return a {schema.get('title', 'JSON')} object",
                "parameters": self.schema,
            }
        ]

    # ------------------------------------------------------------------ #
    def ask(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        if self.llm.stub:
            raise ProtocolError("LLM unavailable (stub-mode): set OPENAI_API_KEY")

        messages: List[Dict[str, str]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        last_error = ""
        for attempt in range(1, _MAX_RETRIES + 1):
            raw = self.llm.call(
                messages,
                model=self.model,
                role=self.role,
                json_mode=True,
                function_spec=self.func_spec,
            )
            try:
                obj = parse_json(raw)
                jsonschema.validate(obj, self.schema)
                return obj
            except (ValueError, jsonschema.ValidationError) as exc:
                last_error = str(exc).splitlines()[0]
                logger.warning("JSON validation failed (%d/%d): %s", attempt, _MAX_RETRIES, last_error)
                messages.append({"role": "assistant", "content": str(raw)[:4000]})
                messages.append({
                    "role": "user",
                    "content": f"The object is invalid ({last_error}). Return ONLY a corrected JSON object.",
                })
                if attempt < _MAX_RETRIES:
                    time.sleep(self.retry_delay)

        raise ProtocolError(f"LLM gave invalid JSON after {_MAX_RETRIES} attempts: {last_error}")


# --------------------------------------------------------------------------- #
# helpers
# --------------------------------------------------------------------------- #
def parse_json(text: str | Dict[str, Any]) -> Dict[str, Any]:
    """
    Pure JSON when response_format works; tolerate an accidental fence.
    Raises ValueError (json.JSONDecodeError is one) otherwise.
    """
    if isinstance(text, dict):
        return text
    stripped = text.strip()
    if stripped.startswith("```"):
        m = _FENCE_RE.search(stripped)
        if not m:
            raise ValueError("Could not locate fenced JSON block")
        stripped = m.group(1)
    obj = json.loads(stripped)
    if not isinstance(obj, dict):
        raise ValueError("top-level JSON value must be an object")
    return obj
