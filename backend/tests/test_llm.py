"""Tests for the Anthropic adapter, driven by a scripted client."""

import asyncio
from types import SimpleNamespace

import httpx
import pytest
from anthropic import APIConnectionError

from nova.errors import GenerationError
from nova.services.llm import AnthropicLlmService


def _message(*blocks, stop_reason="end_turn", input_tokens=10, output_tokens=5):
    return SimpleNamespace(
        content=list(blocks),
        stop_reason=stop_reason,
        model="claude-test",
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


def _text(text):
    return SimpleNamespace(type="text", text=text)


def _tool_use(block_id, name, arguments):
    return SimpleNamespace(type="tool_use", id=block_id, name=name, input=arguments)


class _ScriptedStream:
    def __init__(self, fragments, final, error=None):
        self.fragments = fragments
        self.final = final
        self.error = error

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, *exc):
        return False

    @property
    async def text_stream(self):
        for fragment in self.fragments:
            yield fragment

    async def get_final_message(self):
        return self.final


class _ScriptedMessages:
    def __init__(self, streams=(), reply=None):
        self.streams = list(streams)
        self.reply = reply
        self.requests = []

    def stream(self, **request):
        self.requests.append(request)
        return self.streams.pop(0)

    async def create(self, **request):
        self.requests.append(request)
        return self.reply


class _Tools:
    def __init__(self):
        self.calls = []

    def definitions(self):
        return [{"name": "search_books", "description": "books", "input_schema": {"type": "object"}}]

    async def invoke(self, name, arguments):
        self.calls.append((name, arguments))
        return "<knowledge_base>...</knowledge_base>"


def _service(settings, messages):
    return AnthropicLlmService(settings, client=SimpleNamespace(messages=messages))


async def _drain(stream):
    return [chunk async for chunk in stream]


async def test_streams_text_and_reports_usage(settings):
    messages = _ScriptedMessages([_ScriptedStream(["Hello", " there"], _message(_text("Hello there")))])

    chunks = await _drain(_service(settings, messages).stream_chat("system", [{"role": "user", "content": "Hi"}]))

    assert [c.text for c in chunks if not c.is_complete] == ["Hello", " there"]
    final = chunks[-1]
    assert final.is_complete and final.model == "claude-test"
    assert (final.input_tokens, final.output_tokens) == (10, 5)
    assert "tools" not in messages.requests[0]


async def test_tool_round_feeds_results_back(settings):
    tools = _Tools()
    first = _message(
        _text("Let me look that up. "),
        _tool_use("tu_1", "search_books", {"query": "dependency injection"}),
        stop_reason="tool_use",
    )
    second = _message(_text("DI passes dependencies in."), input_tokens=20, output_tokens=8)
    messages = _ScriptedMessages(
        [
            _ScriptedStream(["Let me look that up. "], first),
            _ScriptedStream(["DI passes dependencies in."], second),
        ]
    )

    chunks = await _drain(
        _service(settings, messages).stream_chat("system", [{"role": "user", "content": "DI?"}], tools=tools)
    )

    assert "".join(c.text for c in chunks) == "Let me look that up. DI passes dependencies in."
    assert tools.calls == [("search_books", {"query": "dependency injection"})]
    assert chunks[-1].input_tokens == 30 and chunks[-1].output_tokens == 13

    follow_up = messages.requests[1]["messages"]
    assert follow_up[-2]["role"] == "assistant"
    assert follow_up[-2]["content"][1] == {
        "type": "tool_use", "id": "tu_1", "name": "search_books", "input": {"query": "dependency injection"},
    }
    assert follow_up[-1]["content"][0]["tool_use_id"] == "tu_1"


async def test_connection_error_before_first_fragment_is_retried(settings, monkeypatch):
    real_sleep = asyncio.sleep

    async def no_wait(delay):
        await real_sleep(0)

    monkeypatch.setattr(asyncio, "sleep", no_wait)
    error = APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
    messages = _ScriptedMessages(
        [
            _ScriptedStream([], None, error=error),
            _ScriptedStream(["Recovered"], _message(_text("Recovered"))),
        ]
    )

    chunks = await _drain(_service(settings, messages).stream_chat("system", [{"role": "user", "content": "Hi"}]))

    assert chunks[0].text == "Recovered"
    assert len(messages.requests) == 2


async def test_non_retryable_error_becomes_generation_error(settings):
    messages = _ScriptedMessages([_ScriptedStream([], None, error=ValueError("bad request"))])

    with pytest.raises(GenerationError):
        await _drain(_service(settings, messages).stream_chat("system", [{"role": "user", "content": "Hi"}]))
    assert len(messages.requests) == 1


async def test_complete_joins_text_blocks(settings):
    messages = _ScriptedMessages(reply=_message(_text('{"topics_discussed": '), _text("[]}")))

    response = await _service(settings, messages).complete("system", [{"role": "user", "content": "x"}], max_tokens=100)

    assert response.content == '{"topics_discussed": []}'
    assert messages.requests[0]["max_tokens"] == 100
