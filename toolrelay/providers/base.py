# toolrelay/providers/base.py
from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from toolrelay.orchestration.types import Fragment


class Provider(Protocol):
    def stream_chat(
        self,
        *,
        model: str,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[Any] = None,
        temperature: Optional[float] = None,
    ) -> AsyncIterator[Fragment]:
        """Stream one assistant turn as fragments.

        Yields TextDelta / ToolCallDelta items in arrival order and exactly one
        TurnEnd last. Transport and HTTP failures propagate as httpx errors.
        """
        ...
