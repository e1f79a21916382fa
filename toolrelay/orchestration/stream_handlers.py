# toolrelay/orchestration/stream_handlers.py
from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional, Set
from uuid import uuid4

from toolrelay.orchestration.types import (
    AssistantTurn,
    Fragment,
    TextDelta,
    ToolCallDelta,
    ToolInvocation,
    TurnEnd,
)
from toolrelay.utils.tools import parse_tool_arguments

log = logging.getLogger(__name__)


class AccumulatorState(str, Enum):
    IDLE = "idle"
    IN_CALL = "in_call"
    CLOSED = "closed"


class _OpenCall:
    __slots__ = ("index", "id", "given_id", "name", "parts")

    def __init__(self, index: int, call_id: Optional[str], name: str) -> None:
        self.index = index
        self.given_id = bool(call_id)
        self.id = call_id or f"call_{uuid4().hex[:24]}"
        self.name = name
        self.parts: List[str] = []


class DeltaAccumulator:
    """Fold one model turn's fragments into text plus finalized tool invocations.

    Text fragments are returned from ``feed`` so the caller can forward them
    immediately. Tool fragments are grouped by positional index: a new index
    finalizes the open invocation and opens another, the same index appends
    argument text. ``TurnEnd`` (or ``finish``) finalizes whatever is open.
    """

    def __init__(self) -> None:
        self.state = AccumulatorState.IDLE
        self._text: List[str] = []
        self._open: Optional[_OpenCall] = None
        self._finalized: List[ToolInvocation] = []
        self._seen_indices: Set[int] = set()
        self._finish_reason: Optional[str] = None

    def feed(self, fragment: Fragment) -> Optional[str]:
        if self.state is AccumulatorState.CLOSED:
            raise RuntimeError("fragment received after end of turn")
        if isinstance(fragment, TextDelta):
            if not fragment.text:
                return None
            self._text.append(fragment.text)
            return fragment.text
        if isinstance(fragment, ToolCallDelta):
            self._on_tool_fragment(fragment)
            return None
        if isinstance(fragment, TurnEnd):
            self._finish_reason = fragment.finish_reason
            self._close()
            return None
        raise TypeError(f"unsupported fragment: {type(fragment).__name__}")

    def finish(self) -> AssistantTurn:
        if self.state is not AccumulatorState.CLOSED:
            self._close()
        return AssistantTurn(
            text="".join(self._text),
            invocations=list(self._finalized),
            finish_reason=self._finish_reason,
        )

    def _on_tool_fragment(self, frag: ToolCallDelta) -> None:
        open_call = self._open
        if open_call is not None and frag.index == open_call.index:
            if not (frag.id and open_call.given_id and frag.id != open_call.id):
                if frag.id and not open_call.given_id:
                    open_call.id = frag.id
                    open_call.given_id = True
                if frag.name and not open_call.name:
                    open_call.name = frag.name
                if frag.arguments:
                    open_call.parts.append(frag.arguments)
                return
            # A different id on the open index starts another call.
        elif frag.index in self._seen_indices:
            # Indices are expected to be monotonic within a turn.
            log.warning("Tool call index %s reused after finalization; opening a new invocation", frag.index)
        self._finalize_open()
        self._seen_indices.add(frag.index)
        self._open = _OpenCall(frag.index, frag.id, frag.name or "")
        if frag.arguments:
            self._open.parts.append(frag.arguments)
        self.state = AccumulatorState.IN_CALL

    def _finalize_open(self) -> None:
        call = self._open
        if call is None:
            return
        self._open = None
        self.state = AccumulatorState.IDLE
        raw = "".join(call.parts)
        self._finalized.append(
            ToolInvocation(
                id=call.id,
                name=call.name,
                arguments_text=raw,
                arguments=parse_tool_arguments(raw, call.name),
            )
        )

    def _close(self) -> None:
        self._finalize_open()
        self.state = AccumulatorState.CLOSED
