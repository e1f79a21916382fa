# tests/test_health.py
from __future__ import annotations

import json
import logging

from httpx import AsyncClient, ASGITransport
from apps.api.main import app

from toolrelay.core.logging import JsonFormatter, PlainFormatter, StreamContextFilter, stream_id_var


async def test_health() -> None:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.get("/health", headers={"X-Request-Id": "req-1"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert "time" in data
    assert resp.headers["x-request-id"] == "req-1"


def _record(msg) -> logging.LogRecord:
    record = logging.LogRecord("app.engine", logging.INFO, __file__, 1, msg, None, None)
    StreamContextFilter().filter(record)
    return record


def test_formatters_stamp_stream_id() -> None:
    token = stream_id_var.set("stream_abc")
    try:
        record = _record({"event": "engine.finished", "outcome": "completed"})
    finally:
        stream_id_var.reset(token)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["stream_id"] == "stream_abc"
    assert payload["outcome"] == "completed"
    plain = PlainFormatter().format(record)
    assert "[stream_abc]" in plain
    assert "event=engine.finished" in plain


def test_formatters_without_stream() -> None:
    record = _record("plain text %s")
    payload = json.loads(JsonFormatter().format(record))
    assert "stream_id" not in payload
    assert payload["message"] == "plain text %s"
