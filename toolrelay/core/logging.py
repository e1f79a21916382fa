# toolrelay/core/logging.py
from __future__ import annotations

import json
import logging
import os
import time
from contextvars import ContextVar
from typing import Any, Dict, Optional
from uuid import uuid4

from fastapi import Request, Response

# Set while a relay stream is being produced so every record can be correlated.
stream_id_var: ContextVar[Optional[str]] = ContextVar("stream_id", default=None)

_PLAIN_ALIASES = ("plain", "text", "human")


class StreamContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.stream_id = stream_id_var.get()
        return True


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Message fields of a record: dict messages are used as-is, anything else becomes ``message``."""
    if isinstance(record.msg, dict):
        return dict(record.msg)
    return {"message": record.getMessage()}


def _plain_value(value: Any) -> str:
    text = json.dumps(value, ensure_ascii=False, default=str) if isinstance(value, (dict, list)) else str(value)
    return f'"{text}"' if (" " in text or ";" in text) else text


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "time": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "logger": record.name,
        }
        if getattr(record, "stream_id", None):
            payload["stream_id"] = record.stream_id
        payload.update(_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class PlainFormatter(logging.Formatter):
    """``ts | LEVEL | logger [stream]: k=v ...`` for terminals."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        head = f"{time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(record.created))} | {record.levelname.ljust(5)} | {record.name}"
        if getattr(record, "stream_id", None):
            head += f" [{record.stream_id}]"
        fields = _fields(record)
        if isinstance(record.msg, dict):
            body = " ".join(f"{k}={_plain_value(v)}" for k, v in fields.items())
        else:
            body = fields["message"]
        if record.exc_info:
            body += "\n" + self.formatException(record.exc_info)
        return f"{head}: {body}".rstrip()


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.addFilter(StreamContextFilter())
    plain = os.getenv("LOG_FORMAT", "json").lower() in _PLAIN_ALIASES
    handler.setFormatter(PlainFormatter() if plain else JsonFormatter())

    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers.clear()
    root.addHandler(handler)


async def request_logging_middleware(request: Request, call_next):
    """Log one line per request and echo (or mint) the ``X-Request-Id`` header.

    Streaming responses are logged when their headers go out, not when the stream ends.
    """
    started = time.perf_counter()
    request_id = request.headers.get("x-request-id") or uuid4().hex
    status = 500
    try:
        response: Response = await call_next(request)
        status = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        logging.getLogger("app.request").info(
            {
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "request_id": request_id,
            }
        )
