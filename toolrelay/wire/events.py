# toolrelay/wire/events.py
from __future__ import annotations

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class ContentEvent(BaseModel):
    type: Literal["content"] = "content"
    content: str


class ToolCallEvent(BaseModel):
    type: Literal["tool_call"] = "tool_call"
    tool_name: str
    tool_call_id: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolProgressEvent(BaseModel):
    type: Literal["tool_progress"] = "tool_progress"
    tool_name: str
    status: str
    message: str = ""
    details: Optional[Dict[str, Any]] = None


class ToolResultEvent(BaseModel):
    type: Literal["tool_result"] = "tool_result"
    tool_name: str
    tool_call_id: str
    result: str


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    routing_decision: str
    url_count: int = 0
    memory_hint: bool = False
    active_tool_name: Optional[str] = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"


WireEvent = Annotated[
    Union[ContentEvent, ToolCallEvent, ToolProgressEvent, ToolResultEvent, StatusEvent, ErrorEvent, DoneEvent],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[WireEvent] = TypeAdapter(WireEvent)


def parse_event(data: Dict[str, Any]) -> WireEvent:
    """Validate a decoded frame payload; raises pydantic.ValidationError on unknown or malformed events."""
    return _adapter.validate_python(data)
