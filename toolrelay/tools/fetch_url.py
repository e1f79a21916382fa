# toolrelay/tools/fetch_url.py
from __future__ import annotations

import logging
import re
from typing import Any, Dict
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup

from toolrelay.orchestration.tool_runtime import ProgressCallback
from toolrelay.orchestration.types import ToolResult

log = logging.getLogger("app.tools.fetch_url")

_WS_RX = re.compile(r"[ \t\f\v]+")
_NL_RX = re.compile(r"\n{3,}")


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "nav", "footer", "header", "svg"]):
        tag.decompose()
    text = soup.get_text("\n")
    lines = [_WS_RX.sub(" ", ln).strip() for ln in text.splitlines()]
    return _NL_RX.sub("\n\n", "\n".join(lines)).strip()


class FetchUrlTool:
    name = "fetch_url"
    description = "Fetch a web page and return its readable text content."
    parameters: Dict[str, Any] = {
        "type": "object",
        "properties": {"url": {"type": "string", "description": "Absolute http(s) URL to fetch."}},
        "required": ["url"],
    }

    def __init__(self, max_chars: int = 8000, timeout: float = 10.0) -> None:
        self.max_chars = max_chars
        self.timeout = timeout

    async def execute(self, args: Dict[str, Any], on_progress: ProgressCallback) -> ToolResult:
        url = str(args.get("url") or "").strip()
        if urlparse(url).scheme not in ("http", "https"):
            return ToolResult(success=False, error=f"Only http and https URLs can be fetched: {url or '<empty>'}")

        on_progress("fetching", f"Fetching {url}", {"url": url})
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            r = await client.get(url, headers={"User-Agent": "ToolRelay/1.0"})
            if r.is_error:
                return ToolResult(success=False, error=f"HTTP {r.status_code} while fetching {url}")
            content_type = r.headers.get("content-type", "")
            body = r.text

        text = html_to_text(body) if "html" in content_type or body.lstrip().startswith("<") else body.strip()
        truncated = len(text) > self.max_chars
        if truncated:
            text = text[: self.max_chars] + "\n\n[content truncated]"
        on_progress("completed", "Page fetched", {"url": url, "chars": len(text), "truncated": truncated})
        log.info({"event": "tool.fetch_url", "url": url, "chars": len(text), "truncated": truncated})
        return ToolResult(success=True, data=f"Content of {url}:\n\n{text}")
