# toolrelay/tools/web_search.py
from __future__ import annotations

import logging
import time
from typing import Any, Dict, List
from urllib.parse import urlparse

import httpx

from toolrelay.orchestration.tool_runtime import ProgressCallback
from toolrelay.orchestration.types import ToolResult

log = logging.getLogger("app.tools.web_search")


def _domain(url: str) -> str:
    host = urlparse(url).hostname or ""
    return host.removeprefix("www.") or "unknown"


class WebSearchTool:
    """Web search over a Tavily-compatible ``/search`` endpoint."""

    name = "web_search"
    description = (
        "Search the web for current information. Returns a numbered list of sources "
        "with title, URL and a content excerpt."
    )
    parameters: Dict[str, Any] = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "What to search for."},
            "max_results": {"type": "integer", "minimum": 1, "maximum": 10, "default": 5},
            "search_depth": {"type": "string", "enum": ["basic", "advanced"], "default": "advanced"},
        },
        "required": ["query"],
    }

    def __init__(self, api_key: str, base_url: str = "https://api.tavily.com", timeout: float = 20.0) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def execute(self, args: Dict[str, Any], on_progress: ProgressCallback) -> ToolResult:
        query = str(args.get("query") or "").strip()
        if not query:
            return ToolResult(success=False, error="query is required")
        max_results = max(1, min(int(args.get("max_results") or 5), 10))
        depth = args.get("search_depth") if args.get("search_depth") in ("basic", "advanced") else "advanced"

        on_progress("searching", "Searching the web...", {"query": query})
        started = time.monotonic()
        payload = {
            "query": query,
            "max_results": max_results,
            "search_depth": depth,
            "include_answer": False,
            "include_images": False,
            "include_raw_content": False,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.post(
                f"{self.base_url}/search",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            r.raise_for_status()
            results: List[Dict[str, Any]] = r.json().get("results") or []
        elapsed_ms = int((time.monotonic() - started) * 1000)

        if not results:
            on_progress("completed", "No results found", {"query": query, "results_count": 0})
            return ToolResult(success=True, data=f'No results found for "{query}".')

        sources = [
            {"position": i, "title": res.get("title") or "", "url": res.get("url") or "", "domain": _domain(res.get("url") or "")}
            for i, res in enumerate(results, start=1)
        ]
        on_progress(
            "found",
            f"Found {len(results)} sources",
            {"query": query, "results_count": len(results), "response_ms": elapsed_ms, "sources": sources},
        )

        lines = [f'Web Search Results for: "{query}"', "", f"Found {len(results)} results:"]
        for src, res in zip(sources, results):
            score = float(res.get("score") or 0.0)
            lines += [
                "",
                f"{src['position']}. {src['title']}",
                f"   URL: {src['url']}",
                f"   Content: {res.get('content') or ''}",
                f"   Relevance Score: {score * 100:.1f}%",
            ]
        on_progress("completed", "Analysis complete", {"query": query, "results_count": len(results)})
        log.info({"event": "tool.web_search", "results": len(results), "ms": elapsed_ms})
        return ToolResult(success=True, data="\n".join(lines))
