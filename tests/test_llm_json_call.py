"""
tests/test_llm_json_call.py
===========================

Regression tests for refinery.llm.json_call.LLMJsonCaller

The test-double replaces the global `get_default_client()` so the code
under test receives our stub instead of a real OpenAI client.  No network
traffic.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List

import pytest

from refinery.audit.llm_call_log import LLMCallLogger
from refinery.dev.schema import FIXER_PATCH_V1, ProtocolError
from refinery.llm.client import STUB_REPLY, LLMClient
from refinery.llm.json_call import LLMJsonCaller, parse_json


# ------------------------------------------------------------------------- #
# helpers
# ------------------------------------------------------------------------- #
def _minimal_patch() -> dict[str, Any]:
    """Return the smallest patch that validates against FIXER_PATCH_V1."""
    return {"ops": [{"kind": "add", "path": "foo.py", "content": "print('hi')\n"}]}


class _StubLLM:
    """
    Very small stand-in for refinery.llm.client.LLMClient.

    • responses[i] is returned by the i-th call().
    • has .stub attribute so LLMJsonCaller's stub guard works.
    """

    def __init__(self, responses: List[Any], stub: bool = False):
        self._queue = list(responses)
        self.stub = stub
        self.calls: List[dict] = []

    def call(self, messages, **kw):
        self.calls.append({"messages": list(messages), **kw})
        if not self._queue:
            raise RuntimeError("StubLLM queue exhausted")
        return self._queue.pop(0)


@pytest.fixture
def _patch_llm(monkeypatch):
    """Provide a helper that installs a fresh StubLLM for the current test."""

    def _install(responses: List[Any], stub: bool = False) -> _StubLLM:
        from refinery.llm import json_call as _jc_mod

        fake = _StubLLM(responses, stub=stub)
        monkeypatch.setattr(_jc_mod, "get_default_client", lambda: fake)
        return fake

    return _install


def _caller(**kw) -> LLMJsonCaller:
    return LLMJsonCaller(schema=FIXER_PATCH_V1, function_name="fixer_patch", retry_delay=0, **kw)


# ------------------------------------------------------------------------- #
# test-cases
# ------------------------------------------------------------------------- #
def test_plain_json_string(_patch_llm):
    """Happy-path: assistant returns plain JSON text."""
    payload = _minimal_patch()
    stub = _patch_llm([json.dumps(payload)])

    obj = _caller(role="fixer").ask("sys", "user")
    assert obj == payload
    assert stub.calls[0]["role"] == "fixer"
    assert stub.calls[0]["function_spec"][0]["name"] == "fixer_patch"


def test_tool_call_dict_return(_patch_llm):
    """
    Tool-call path: LLMClient.call() may hand back an already-parsed dict,
    so LLMJsonCaller must accept `obj` without trying to json-decode.
    """
    payload = _minimal_patch()
    _patch_llm([payload])

    assert _caller().ask("system", "user") == payload


def test_fenced_json_is_accepted(_patch_llm):
    payload = _minimal_patch()
    _patch_llm(["```json\n" + json.dumps(payload) + "\n```"])
    assert _caller().ask("s", "u") == payload


def test_retry_then_success(_patch_llm):
    """
    First response is invalid, second violates the schema, third is good.
    The corrective turns are appended to the conversation.
    """
    good = _minimal_patch()
    stub = _patch_llm(["NOT-JSON", json.dumps({"ops": [{"kind": "zap", "path": "x"}]}), json.dumps(good)])

    assert _caller().ask("sys", "usr") == good
    assert not stub._queue
    last_messages = stub.calls[-1]["messages"]
    assert last_messages[-1]["role"] == "user"
    assert "invalid" in last_messages[-1]["content"]


def test_gives_up_after_retries(_patch_llm):
    _patch_llm(["nope", "still nope", "[1, 2]"])
    with pytest.raises(ProtocolError, match="after 3 attempts"):
        _caller().ask("sys", "usr")


def test_stub_mode_raises_protocol_error(_patch_llm):
    _patch_llm([], stub=True)
    with pytest.raises(ProtocolError, match="stub-mode"):
        _caller().ask("sys", "usr")


def test_parse_json_requires_object():
    assert parse_json({"a": 1}) == {"a": 1}
    with pytest.raises(ValueError):
        parse_json("[1]")
    with pytest.raises(ValueError):
        parse_json("```\nno closing fence")


# ------------------------------------------------------------------------- #
# client / audit log
# ------------------------------------------------------------------------- #
def test_client_without_key_is_stub(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    client = LLMClient()
    assert client.stub
    assert client.call([{"role": "user", "content": "hi"}]) == STUB_REPLY


def test_call_logger_writes_jsonl(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("REFINERY_LOG_DIR", str(tmp_path / "logs"))
    LLMCallLogger.reset()
    try:
        log = LLMCallLogger()
        assert LLMCallLogger() is log
        log.log({"role": "judge", "model": "m"})
        lines = log.path.read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[0]) == {"role": "judge", "model": "m"}
        assert log.path.parent == tmp_path / "logs"
    finally:
        LLMCallLogger.reset()
