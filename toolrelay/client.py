# toolrelay/client.py
from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from toolrelay.wire.decoder import StreamDecoder, StreamReader, aiter_events
from toolrelay.wire.events import WireEvent


class RelayError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RelayClient:
    """Consumer side of the relay: posts a chat request and decodes the event stream."""

    def __init__(
        self,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.transport = transport
        self.timeout = timeout
        self.last_stream_id: Optional[str] = None
        self.last_thread_id: Optional[str] = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, transport=self.transport, timeout=self.timeout)

    async def stream_chat(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: Optional[str] = None,
        thread_id: Optional[str] = None,
        persist: bool = False,
        active_tool: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[WireEvent]:
        body: Dict[str, Any] = {"messages": messages, "persist": persist}
        for key, value in (("model", model), ("thread_id", thread_id), ("active_tool", active_tool), ("temperature", temperature)):
            if value is not None:
                body[key] = value
        async with self._client() as client:
            async with client.stream("POST", "/chat/completions", json=body) as resp:
                if resp.is_error:
                    detail = (await resp.aread()).decode("utf-8", errors="replace")
                    raise RelayError(f"relay returned {resp.status_code}: {detail}", status_code=resp.status_code)
                self.last_stream_id = resp.headers.get("X-Stream-Id")
                self.last_thread_id = resp.headers.get("X-Thread-Id")
                async for event in aiter_events(resp.aiter_bytes(), StreamDecoder()):
                    yield event

    async def complete(self, messages: List[Dict[str, Any]], **kwargs: Any) -> StreamReader:
        reader = StreamReader()
        async for event in self.stream_chat(messages, **kwargs):
            reader.handle(event)
        if reader.error is not None:
            raise RelayError(reader.error)
        return reader

    async def cancel(self, stream_id: str) -> bool:
        async with self._client() as client:
            r = await client.post(f"/chat/streams/{stream_id}/cancel")
        if r.status_code == 404:
            return False
        r.raise_for_status()
        return True
