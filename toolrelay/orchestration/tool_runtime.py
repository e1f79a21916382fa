# toolrelay/orchestration/tool_runtime.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from pydantic import ValidationError

from toolrelay.core.metrics import TOOL_DISPATCHES
from toolrelay.orchestration.types import ToolResult

log = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str, Optional[Dict[str, Any]]], None]


@runtime_checkable
class Tool(Protocol):
    name: str
    description: str
    parameters: Dict[str, Any]

    async def execute(self, args: Dict[str, Any], on_progress: ProgressCallback) -> ToolResult:
        """Run the capability. ``on_progress(status, message, details)`` may be called any number of times."""
        ...


class ToolRegistry:
    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def catalog(self) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
            }
            for t in self._tools.values()
        ]


def _noop_progress(status: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
    return None


class ToolDispatcher:
    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def dispatch(
        self,
        tool_name: str,
        args: Dict[str, Any],
        on_progress: Optional[ProgressCallback] = None,
    ) -> ToolResult:
        tool = self.registry.get(tool_name)
        if tool is None:
            TOOL_DISPATCHES.labels(tool=tool_name, outcome="unknown").inc()
            return ToolResult(success=False, error=f"Unknown tool: {tool_name}")
        try:
            raw = await tool.execute(args, on_progress or _noop_progress)
        except Exception as e:  # noqa: BLE001
            log.exception("Tool %s failed", tool_name)
            TOOL_DISPATCHES.labels(tool=tool_name, outcome="error").inc()
            return ToolResult(success=False, error=str(e) or type(e).__name__)
        try:
            result = ToolResult.model_validate(raw)
        except ValidationError:
            log.error("Tool %s returned an invalid result: %r", tool_name, raw)
            TOOL_DISPATCHES.labels(tool=tool_name, outcome="error").inc()
            return ToolResult(success=False, error=f"Tool {tool_name} returned an invalid result")
        TOOL_DISPATCHES.labels(tool=tool_name, outcome="ok" if result.success else "failed").inc()
        return result
