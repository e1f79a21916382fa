# toolrelay/orchestration/types.py
from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class ToolInvocation(BaseModel):
    id: str
    name: str
    arguments_text: str = ""
    arguments: Dict[str, Any] = Field(default_factory=dict)

    def to_provider(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments, ensure_ascii=False)},
        }


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[str] = None
    tool_calls: Optional[List[ToolInvocation]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def to_provider(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            out["tool_calls"] = [c.to_provider() for c in self.tool_calls]
        if self.tool_call_id is not None:
            out["tool_call_id"] = self.tool_call_id
        if self.name is not None:
            out["name"] = self.name
        return out


# Upstream fragments, in the order the provider yields them.

class TextDelta(BaseModel):
    text: str


class ToolCallDelta(BaseModel):
    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


class TurnEnd(BaseModel):
    finish_reason: Optional[str] = None


Fragment = Union[TextDelta, ToolCallDelta, TurnEnd]


class AssistantTurn(BaseModel):
    text: str = ""
    invocations: List[ToolInvocation] = Field(default_factory=list)
    finish_reason: Optional[str] = None


class ToolResult(BaseModel):
    success: bool
    data: Optional[str] = None
    error: Optional[str] = None

    def as_text(self) -> str:
        if self.success:
            return self.data or ""
        return f"Error: {self.error or 'tool failed'}"


class EngineLimits(BaseModel):
    max_rounds: int = 5
    max_tools_per_round: int = 5
    duplicate_call_limit: int = 2
    tool_call_caps: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings) -> "EngineLimits":
        return cls(
            max_rounds=settings.engine_max_rounds,
            max_tools_per_round=settings.engine_max_tools_per_round,
            duplicate_call_limit=settings.engine_duplicate_call_limit,
            tool_call_caps=dict(settings.tool_call_caps),
        )
