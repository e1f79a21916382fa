# tests/test_tool_dispatcher.py
from __future__ import annotations

import pytest

from fakes import FakeTool, RawTool, make_dispatcher
from toolrelay.orchestration.tool_runtime import Tool, ToolRegistry


async def test_dispatch_runs_handler_and_forwards_progress() -> None:
    tool = FakeTool("web_search", result="3 results", progress=["searching", "found"])
    dispatcher = make_dispatcher(tool)
    seen = []
    result = await dispatcher.dispatch("web_search", {"query": "x"}, lambda s, m, d=None: seen.append((s, m)))
    assert result.success
    assert result.as_text() == "3 results"
    assert tool.calls == [{"query": "x"}]
    assert [s for s, _ in seen] == ["searching", "found"]


async def test_unknown_tool_is_a_failure_result() -> None:
    result = await make_dispatcher().dispatch("nope", {})
    assert not result.success
    assert result.as_text() == "Error: Unknown tool: nope"


async def test_handler_exception_becomes_failure_result() -> None:
    dispatcher = make_dispatcher(FakeTool("flaky", error=RuntimeError("backend down")))
    result = await dispatcher.dispatch("flaky", {})
    assert not result.success
    assert result.error == "backend down"
    assert result.as_text().startswith("Error:")


async def test_mapping_result_is_accepted() -> None:
    dispatcher = make_dispatcher(RawTool("plain", result={"success": True, "data": "x"}))
    result = await dispatcher.dispatch("plain", {})
    assert result.success
    assert result.as_text() == "x"


@pytest.mark.parametrize("raw", [None, {"data": "no flag"}, "just text"])
async def test_malformed_result_becomes_failure_result(raw) -> None:
    dispatcher = make_dispatcher(RawTool("odd", result=raw))
    result = await dispatcher.dispatch("odd", {})
    assert not result.success
    assert result.error == "Tool odd returned an invalid result"


async def test_progress_callback_is_optional() -> None:
    dispatcher = make_dispatcher(FakeTool("t", progress=["working"]))
    result = await dispatcher.dispatch("t", {})
    assert result.success


def test_registry_rejects_duplicate_names() -> None:
    registry = ToolRegistry([FakeTool("a")])
    with pytest.raises(ValueError):
        registry.register(FakeTool("a"))


def test_catalog_uses_function_format() -> None:
    registry = ToolRegistry([FakeTool("a"), FakeTool("b")])
    catalog = registry.catalog()
    assert [c["function"]["name"] for c in catalog] == ["a", "b"]
    assert all(c["type"] == "function" for c in catalog)
    assert catalog[0]["function"]["parameters"] == {"type": "object", "properties": {}}
    assert "a" in registry and len(registry) == 2


def test_fake_tool_satisfies_protocol() -> None:
    assert isinstance(FakeTool("a"), Tool)
