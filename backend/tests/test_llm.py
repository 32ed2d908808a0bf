from __future__ import annotations

import json
from typing import Any

import pytest

from radio.errors import GenerationFailedError, TransportError
from radio.llm import OpenAIClient
from radio.llm_base import Message
from radio.session import StreamConsumer, StreamState


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, lines: list[str] | None = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self._lines = lines or []
        self.text = json.dumps(payload) if payload is not None else ""
        self.closed = False

    def json(self) -> Any:
        return self._payload

    def iter_lines(self, decode_unicode: bool = False):
        yield from self._lines

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.closed = True


def _client(responses: list[FakeResponse], calls: list[dict[str, Any]]) -> OpenAIClient:
    client = OpenAIClient("sk-test", "https://api.example.invalid/v1")

    def request(method, url, **kwargs):
        calls.append({"method": method, "url": url, **kwargs})
        return responses.pop(0)

    client._session.request = request  # type: ignore[method-assign]
    return client


def _sse(*events: tuple[str, Any]) -> list[str]:
    lines: list[str] = []
    for name, data in events:
        lines.append(f"event: {name}")
        lines.append("data: " + (data if isinstance(data, str) else json.dumps(data)))
        lines.append("")
    return lines


def test_stream_run_maps_server_sent_events():
    lines = _sse(
        ("thread.run.created", {"id": "run_1"}),
        ("thread.run.step.created", {"step_details": {"type": "tool_calls", "tool_calls": [{"type": "file_search"}]}}),
        ("thread.message.delta", {"delta": {"content": [{"type": "text", "text": {"value": "Hel"}}]}}),
        ("thread.message.delta", {"delta": {"content": [{"type": "text", "text": {"value": "lo"}}]}}),
        (
            "thread.message.incomplete",
            {
                "id": "msg_1",
                "role": "assistant",
                "status": "incomplete",
                "incomplete_details": {"reason": "max_tokens"},
                "content": [{"type": "text", "text": {"value": "Hello"}}],
            },
        ),
        ("thread.run.step.completed", {"status": "completed"}),
        ("done", "[DONE]"),
    )
    calls: list[dict[str, Any]] = []
    response = FakeResponse(lines=lines)
    client = _client([response], calls)

    events = list(client.stream_run("thread_1", assistant_id="asst_1", model="gpt-4o-mini"))

    assert [e.kind for e in events] == ["tool_call_created", "text_delta", "text_delta", "message_done", "run_step_done", "end"]
    assert events[0].text == "file_search"
    assert events[3].incomplete_reason == "max_tokens"
    assert calls[0]["json"]["stream"] is True
    assert calls[0]["headers"]["OpenAI-Beta"] == "assistants=v2"
    assert response.closed

    consumer = StreamConsumer("t")
    assert consumer.consume(events) == StreamState.COMPLETE
    assert consumer.text == "Hello"


def test_expired_run_ends_the_stream_as_failed():
    lines = _sse(
        ("thread.run.created", {"id": "run_1"}),
        ("thread.run.expired", {"status": "expired", "last_error": {"code": "expired", "message": "took too long"}}),
        ("done", "[DONE]"),
    )
    client = _client([FakeResponse(lines=lines)], [])

    events = list(client.stream_run("thread_1", assistant_id="asst_1", model="gpt-4o-mini"))

    assert [(e.kind, e.status) for e in events[:1]] == [("run_step_done", "expired")]
    with pytest.raises(GenerationFailedError) as info:
        StreamConsumer("t").consume(events)
    assert info.value.code == "expired"


def test_http_errors_carry_status():
    client = _client([FakeResponse(status_code=429, payload={"error": "slow down"})], [])
    with pytest.raises(TransportError) as info:
        client.create_thread([Message(role="user", content="hi")])
    assert info.value.status == 429


def test_list_endpoints_follow_pagination():
    pages = [
        FakeResponse(payload={"data": [{"id": "vs_1", "name": "a"}], "has_more": True}),
        FakeResponse(payload={"data": [{"id": "vs_2", "name": "b"}], "has_more": False}),
    ]
    calls: list[dict[str, Any]] = []
    client = _client(pages, calls)

    assert [r.id for r in client.list_indexes()] == ["vs_1", "vs_2"]
    assert calls[1]["params"]["after"] == "vs_1"


def test_list_messages_reads_text_and_incomplete_reason():
    payload = {
        "data": [
            {"id": "m1", "role": "user", "content": [{"type": "text", "text": {"value": "hi"}}]},
            {
                "id": "m2",
                "role": "assistant",
                "status": "incomplete",
                "incomplete_details": {"reason": "max_tokens"},
                "content": [{"type": "text", "text": {"value": "partial"}}],
            },
        ],
        "has_more": False,
    }
    calls: list[dict[str, Any]] = []
    client = _client([FakeResponse(payload=payload)], calls)

    messages = client.list_messages("thread_1")
    assert [(m.role, m.content) for m in messages] == [("user", "hi"), ("assistant", "partial")]
    assert messages[1].incomplete
    assert calls[0]["params"]["order"] == "asc"
