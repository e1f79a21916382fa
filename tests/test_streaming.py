# tests/test_streaming.py
from __future__ import annotations

import asyncio
import json

import pytest
import respx
from httpx import ASGITransport, AsyncClient, Response

import apps.api.main as api_main
from fakes import HANG, Pause, ScriptedProvider
from toolrelay.core.errors import MSG_INVALID_CREDENTIALS
from toolrelay.orchestration.controller import ABORT_NOTICE
from toolrelay.orchestration.types import TextDelta
from toolrelay.wire.decoder import StreamDecoder
from toolrelay.wire.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    StatusEvent,
    ToolCallEvent,
    ToolProgressEvent,
    ToolResultEvent,
)

UPSTREAM = "http://upstream.test/v1/chat/completions"


def _sse(*chunks) -> bytes:
    return b"".join(b"data: " + json.dumps(c).encode("utf-8") + b"\n\n" for c in chunks) + b"data: [DONE]\n\n"


async def collect_sse_bytes(ac: AsyncClient, url: str, body: dict | None = None):
    chunks: list[bytes] = []
    async with ac.stream("POST", url, json=body) as resp:
        assert resp.status_code == 200
        assert resp.headers.get("content-type", "").startswith("text/event-stream")
        assert resp.headers.get("x-stream-id", "").startswith("stream_")
        headers = dict(resp.headers)
        async for b in resp.aiter_bytes():
            chunks.append(b)
    return b"".join(chunks), headers


def decode(raw: bytes) -> list:
    decoder = StreamDecoder()
    return decoder.feed(raw) + decoder.flush()


@pytest.fixture
def client():
    transport = ASGITransport(app=api_main.app)
    return AsyncClient(transport=transport, base_url="http://test")


@respx.mock
async def test_stream_text_answer(client) -> None:
    route = respx.post(UPSTREAM).mock(
        return_value=Response(
            200,
            content=_sse(
                {"choices": [{"delta": {"content": "Прив"}}]},
                {"choices": [{"delta": {"content": "ет!"}, "finish_reason": "stop"}]},
            ),
        )
    )
    async with client as ac:
        raw, _ = await collect_sse_bytes(ac, "/chat/completions", {"model": "gpt-test", "messages": [{"role": "user", "content": "hi"}]})

    assert route.called
    sent = json.loads(route.calls.last.request.content)
    assert sent["model"] == "gpt-test"
    assert [t["function"]["name"] for t in sent["tools"]] == ["web_search", "fetch_url"]
    events = decode(raw)
    assert events == [ContentEvent(content="Прив"), ContentEvent(content="ет!"), DoneEvent()]
    assert raw.endswith(b"data: [DONE]\n\n")


@respx.mock
async def test_stream_with_tool_round(client) -> None:
    first = _sse(
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "call_1", "function": {"name": "fetch_url", "arguments": "{\"url\": "}}]}}]},
        {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": "\"https://example.test/page\"}"}}]}}]},
        {"choices": [{"delta": {}, "finish_reason": "tool_calls"}]},
    )
    second = _sse({"choices": [{"delta": {"content": "The page says hello."}, "finish_reason": "stop"}]})
    upstream = respx.post(UPSTREAM).mock(side_effect=[Response(200, content=first), Response(200, content=second)])
    respx.get("https://example.test/page").mock(
        return_value=Response(200, text="<html><body><p>hello</p></body></html>", headers={"content-type": "text/html"})
    )

    body = {"messages": [{"role": "user", "content": "what is on https://example.test/page ?"}]}
    async with client as ac:
        raw, _ = await collect_sse_bytes(ac, "/chat/completions", body)

    events = decode(raw)
    kinds = [type(e) for e in events]
    assert kinds[0] is StatusEvent
    assert events[0].routing_decision == "url_content"
    assert kinds[1] is ToolCallEvent
    assert events[1].args == {"url": "https://example.test/page"}
    assert ToolProgressEvent in kinds
    result = next(e for e in events if isinstance(e, ToolResultEvent))
    assert result.tool_call_id == "call_1"
    assert "hello" in result.result
    assert events[-2] == ContentEvent(content="The page says hello.")
    assert events[-1] == DoneEvent()

    second_request = json.loads(upstream.calls[1].request.content)
    assert second_request["messages"][-1]["role"] == "tool"
    assert second_request["messages"][-1]["tool_call_id"] == "call_1"


@respx.mock
async def test_stream_upstream_auth_error(client) -> None:
    respx.post(UPSTREAM).mock(return_value=Response(401, json={"error": {"message": "bad key sk-test"}}))
    async with client as ac:
        raw, _ = await collect_sse_bytes(ac, "/chat/completions", {"messages": [{"role": "user", "content": "hi"}]})
    events = decode(raw)
    assert events == [ErrorEvent(message=MSG_INVALID_CREDENTIALS), DoneEvent()]
    assert b"sk-test" not in raw


async def test_empty_messages_rejected(client) -> None:
    async with client as ac:
        r = await ac.post("/chat/completions", json={"messages": []})
    assert r.status_code == 400


async def test_cancel_unknown_stream(client) -> None:
    async with client as ac:
        r = await ac.post("/chat/streams/stream_missing/cancel")
    assert r.status_code == 404


async def test_cancel_active_stream(client, monkeypatch) -> None:
    monkeypatch.setattr(api_main.app.state, "provider", ScriptedProvider([[TextDelta(text="x"), HANG]]))
    async with client as ac:
        task = asyncio.create_task(
            collect_sse_bytes(ac, "/chat/completions", {"messages": [{"role": "user", "content": "hi"}]})
        )
        for _ in range(200):
            if api_main.ACTIVE_STREAMS:
                break
            await asyncio.sleep(0.01)
        stream_id = next(iter(api_main.ACTIVE_STREAMS))
        r = await ac.post(f"/chat/streams/{stream_id}/cancel")
        assert r.status_code == 200
        raw, headers = await asyncio.wait_for(task, timeout=5)

    assert headers["x-stream-id"] == stream_id
    events = decode(raw)
    assert events[-2] == ContentEvent(content=ABORT_NOTICE)
    assert events[-1] == DoneEvent()
    assert stream_id not in api_main.ACTIVE_STREAMS


async def test_heartbeat_while_idle(client, monkeypatch) -> None:
    monkeypatch.setattr(api_main.settings, "stream_heartbeat_sec", 0.05)
    monkeypatch.setattr(
        api_main.app.state, "provider", ScriptedProvider([[TextDelta(text="a"), Pause(0.3), TextDelta(text="b")]])
    )
    async with client as ac:
        raw, _ = await collect_sse_bytes(ac, "/chat/completions", {"messages": [{"role": "user", "content": "hi"}]})
    assert b": ping\n\n" in raw
    assert decode(raw) == [ContentEvent(content="a"), ContentEvent(content="b"), DoneEvent()]


async def test_persisted_thread_records_both_turns(client, monkeypatch) -> None:
    monkeypatch.setattr(api_main.app.state, "provider", ScriptedProvider([[TextDelta(text="Stored answer")]]))
    async with client as ac:
        _, headers = await collect_sse_bytes(
            ac, "/chat/completions", {"persist": True, "messages": [{"role": "user", "content": "remember this"}]}
        )
        thread_id = headers["x-thread-id"]
        r = await ac.get(f"/threads/{thread_id}/messages")
    assert r.status_code == 200
    items = r.json()["messages"]
    assert [(m["role"], m["content"]) for m in items] == [("user", "remember this"), ("assistant", "Stored answer")]


async def test_unknown_thread_is_404(client) -> None:
    async with client as ac:
        r = await ac.get("/threads/nope/messages")
    assert r.status_code == 404


async def test_tools_and_metrics_endpoints(client) -> None:
    async with client as ac:
        tools = await ac.get("/tools")
        metrics = await ac.get("/metrics")
    assert [t["function"]["name"] for t in tools.json()["tools"]] == ["web_search", "fetch_url"]
    assert metrics.status_code == 200
    assert "toolrelay_rounds_total" in metrics.text
