# toolrelay/wire/decoder.py
from __future__ import annotations

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator, Callable, Dict, List, Optional

from pydantic import ValidationError

from toolrelay.wire.encoder import DATA_PREFIX, DONE_SENTINEL, FRAME_TERMINATOR
from toolrelay.wire.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    StatusEvent,
    ToolCallEvent,
    ToolProgressEvent,
    ToolResultEvent,
    WireEvent,
    parse_event,
)

log = logging.getLogger(__name__)


class StreamDecoder:
    """Rebuild wire events from arbitrarily chunked bytes.

    The trailing, possibly incomplete segment is carried over between calls to
    ``feed``. Once the terminal frame is seen everything after it is ignored.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.finished = False
        self.malformed = 0

    def feed(self, chunk: bytes) -> List[WireEvent]:
        if self.finished:
            return []
        self._buffer += self._utf8.decode(chunk)
        if "\r" in self._buffer:
            self._buffer = self._buffer.replace("\r\n", "\n")
        segments = self._buffer.split(FRAME_TERMINATOR)
        self._buffer = segments.pop()
        return self._process(segments)

    def flush(self) -> List[WireEvent]:
        """Process whatever is left once the transport reports end of stream."""
        if self.finished:
            return []
        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        if not tail.strip():
            return []
        return self._process([tail])

    def _process(self, segments: List[str]) -> List[WireEvent]:
        events: List[WireEvent] = []
        for segment in segments:
            for line in segment.split("\n"):
                if not line.startswith(DATA_PREFIX):
                    continue
                data = line[len(DATA_PREFIX):].strip()
                if data == DONE_SENTINEL:
                    events.append(DoneEvent())
                    self.finished = True
                    self._buffer = ""
                    return events
                event = self._parse(data)
                if event is not None:
                    events.append(event)
        return events

    def _parse(self, data: str) -> Optional[WireEvent]:
        try:
            return parse_event(json.loads(data))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            self.malformed += 1
            log.warning("Skipping malformed frame (%s): %.200s", type(e).__name__, data)
            return None


async def aiter_events(chunks: AsyncIterable[bytes], decoder: Optional[StreamDecoder] = None) -> AsyncIterator[WireEvent]:
    decoder = decoder or StreamDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
        if decoder.finished:
            return
    for event in decoder.flush():
        yield event


class StreamReader:
    """Route decoded events by kind and keep the running display text."""

    def __init__(
        self,
        *,
        on_content: Optional[Callable[[str], None]] = None,
        on_tool_call: Optional[Callable[[ToolCallEvent], None]] = None,
        on_tool_progress: Optional[Callable[[ToolProgressEvent], None]] = None,
        on_tool_result: Optional[Callable[[ToolResultEvent], None]] = None,
        on_status: Optional[Callable[[StatusEvent], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.on_content = on_content
        self.on_tool_call = on_tool_call
        self.on_tool_progress = on_tool_progress
        self.on_tool_result = on_tool_result
        self.on_status = on_status
        self.on_error = on_error
        self.text = ""
        self.events: List[WireEvent] = []
        self.tool_results: Dict[str, ToolResultEvent] = {}
        self.status: Optional[StatusEvent] = None
        self.error: Optional[str] = None
        self.done = False

    def handle(self, event: WireEvent) -> None:
        self.events.append(event)
        if isinstance(event, ContentEvent):
            self.text += event.content
            if self.on_content:
                self.on_content(self.text)
        elif isinstance(event, ToolCallEvent):
            if self.on_tool_call:
                self.on_tool_call(event)
        elif isinstance(event, ToolProgressEvent):
            if self.on_tool_progress:
                self.on_tool_progress(event)
        elif isinstance(event, ToolResultEvent):
            self.tool_results[event.tool_call_id] = event
            if self.on_tool_result:
                self.on_tool_result(event)
        elif isinstance(event, StatusEvent):
            self.status = event
            if self.on_status:
                self.on_status(event)
        elif isinstance(event, ErrorEvent):
            self.error = event.message
            if self.on_error:
                self.on_error(event.message)
        elif isinstance(event, DoneEvent):
            self.done = True

    async def consume(self, chunks: AsyncIterable[bytes]) -> "StreamReader":
        async for event in aiter_events(chunks):
            self.handle(event)
        return self
