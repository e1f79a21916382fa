# toolrelay/wire/encoder.py
from __future__ import annotations

import json
from typing import Iterable

from toolrelay.wire.events import DoneEvent, WireEvent

# Frame grammar: "data: <json>\n\n"; the stream ends with "data: [DONE]\n\n".
DATA_PREFIX = "data:"
FRAME_TERMINATOR = "\n\n"
DONE_SENTINEL = "[DONE]"

DONE_FRAME = f"{DATA_PREFIX} {DONE_SENTINEL}{FRAME_TERMINATOR}".encode("utf-8")
HEARTBEAT_FRAME = f": ping{FRAME_TERMINATOR}".encode("utf-8")


def encode_event(event: WireEvent) -> bytes:
    if isinstance(event, DoneEvent):
        return DONE_FRAME
    payload = json.dumps(event.model_dump(mode="json"), ensure_ascii=False, separators=(",", ":"))
    return f"{DATA_PREFIX} {payload}{FRAME_TERMINATOR}".encode("utf-8")


def encode_events(events: Iterable[WireEvent]) -> bytes:
    return b"".join(encode_event(e) for e in events)


def encode_heartbeat() -> bytes:
    """SSE comment frame; decoders skip it because it carries no data line."""
    return HEARTBEAT_FRAME
