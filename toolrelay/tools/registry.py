# toolrelay/tools/registry.py
from __future__ import annotations

import logging

from toolrelay.core.settings import AppSettings
from toolrelay.orchestration.tool_runtime import ToolRegistry
from toolrelay.tools.fetch_url import FetchUrlTool
from toolrelay.tools.web_search import WebSearchTool

log = logging.getLogger("app.tools")


def build_default_registry(settings: AppSettings) -> ToolRegistry:
    registry = ToolRegistry()
    if settings.tavily_api_key:
        registry.register(WebSearchTool(api_key=settings.tavily_api_key, base_url=settings.tavily_base_url))
    else:
        log.warning("TAVILY_API_KEY not configured; web_search is disabled")
    registry.register(FetchUrlTool(max_chars=settings.fetch_max_chars, timeout=settings.fetch_timeout_sec))
    return registry
