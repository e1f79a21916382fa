# toolrelay/providers/openai_compat.py
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from toolrelay.core.settings import get_settings
from toolrelay.orchestration.types import Fragment, TextDelta, ToolCallDelta, TurnEnd

log = logging.getLogger("app.provider")


def _data_payload(line: str) -> Optional[str]:
    if line.startswith("data: "):
        return line[len("data: "):]
    if line.startswith("data:"):
        return line[len("data:"):].lstrip()
    return None


def fragments_from_chunk(obj: Dict[str, Any]) -> List[Fragment]:
    """Translate one streamed chat.completion.chunk into fragments (without TurnEnd)."""
    out: List[Fragment] = []
    choices = obj.get("choices") or []
    if not choices:
        return out
    choice = choices[0] or {}
    delta = choice.get("delta") or {}
    content = delta.get("content")
    if content:
        out.append(TextDelta(text=content))
    for pos, tc in enumerate(delta.get("tool_calls") or []):
        fn = tc.get("function") or {}
        index = tc.get("index")
        out.append(
            ToolCallDelta(
                index=int(index) if index is not None else pos,
                id=tc.get("id"),
                name=fn.get("name"),
                arguments=fn.get("arguments") or "",
            )
        )
    return out


class ChatCompletionsProvider:
    def __init__(self, base_url: str, api_key: Optional[str] = None, timeout: float = 60.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def stream_chat(
        self,
        *,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Any] = None,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[Fragment]:
        url = f"{self.base_url}/v1/chat/completions"
        payload: Dict[str, Any] = {"model": model, "messages": messages, "stream": True}
        if tools:
            payload["tools"] = tools
            if tool_choice is not None:
                payload["tool_choice"] = tool_choice
        if temperature is not None:
            payload["temperature"] = temperature

        finish_reason: Optional[str] = None
        log.info({"event": "provider.stream start", "model": model, "messages": len(messages), "tools": len(tools or [])})
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            async with client.stream("POST", url, json=payload, headers=self._headers()) as resp:
                if resp.is_error:
                    # Load the body so error mapping can inspect it.
                    await resp.aread()
                resp.raise_for_status()
                async for line in resp.aiter_lines():
                    if not line:
                        continue
                    data_str = _data_payload(line)
                    if data_str is None:
                        continue
                    if data_str.strip() == "[DONE]":
                        break
                    try:
                        obj = json.loads(data_str)
                    except json.JSONDecodeError:
                        log.warning("provider sent an unparsable chunk: %.200s", data_str)
                        continue
                    for frag in fragments_from_chunk(obj):
                        yield frag
                    choices = obj.get("choices") or []
                    if choices and (choices[0] or {}).get("finish_reason"):
                        finish_reason = choices[0]["finish_reason"]
        yield TurnEnd(finish_reason=finish_reason)


def get_provider() -> ChatCompletionsProvider:
    settings = get_settings()
    if not settings.provider_base_url:
        raise RuntimeError("PROVIDER_BASE_URL is not configured")
    return ChatCompletionsProvider(
        base_url=str(settings.provider_base_url),
        api_key=settings.provider_api_key,
        timeout=settings.provider_timeout_sec,
    )
