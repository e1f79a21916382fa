# toolrelay/orchestration/context_router.py
from __future__ import annotations

import re
import time
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel

from toolrelay.orchestration.types import ChatMessage

_URL_RX = re.compile(r"https?://[^\s<>\"')\]]+", re.IGNORECASE)

# Phrases that point back at earlier conversations.
_MEMORY_REQUIRED = [
    re.compile(r"\b(yesterday|last\s+time|earlier|previously|ago)\b", re.I),
    re.compile(r"\b(the\s+other\s+day|last\s+week|when\s+we\s+talked)\b", re.I),
    re.compile(r"\b(remember|recall|you\s+said|you\s+mentioned|you\s+told\s+me)\b", re.I),
    re.compile(r"\b(we\s+discussed|we\s+talked\s+about|we\s+built|we\s+worked\s+on)\b", re.I),
    re.compile(r"\b(my\s+preferred|as\s+i\s+told\s+you|my\s+usual|my\s+favorite)\b", re.I),
    re.compile(r"\b(what\s+do\s+you\s+know\s+about\s+me|who\s+am\s+i)\b", re.I),
]


class ClassificationCache(Protocol):
    def get(self, key: str) -> Optional[bool]: ...

    def set(self, key: str, value: bool) -> None: ...


class TTLClassificationCache:
    """Bounded cache: entries expire after ``ttl_sec``; past ``max_size`` expired then oldest entries go."""

    def __init__(self, ttl_sec: float = 300, max_size: int = 1000, clock=time.monotonic) -> None:
        self.ttl_sec = ttl_sec
        self.max_size = max_size
        self._clock = clock
        self._data: Dict[str, Tuple[bool, float]] = {}

    @staticmethod
    def _norm(key: str) -> str:
        return key.strip().lower()

    def get(self, key: str) -> Optional[bool]:
        k = self._norm(key)
        entry = self._data.get(k)
        if entry is None:
            return None
        value, stamp = entry
        if self._clock() - stamp >= self.ttl_sec:
            self._data.pop(k, None)
            return None
        return value

    def set(self, key: str, value: bool) -> None:
        self._data[self._norm(key)] = (value, self._clock())
        if len(self._data) > self.max_size:
            self._evict()

    def _evict(self) -> None:
        now = self._clock()
        for k in [k for k, (_, ts) in self._data.items() if now - ts >= self.ttl_sec]:
            del self._data[k]
        overflow = len(self._data) - self.max_size
        if overflow > 0:
            oldest = sorted(self._data.items(), key=lambda kv: kv[1][1])[:overflow]
            for k, _ in oldest:
                del self._data[k]

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


def needs_memory(query: str) -> bool:
    q = (query or "").strip()
    if len(q) < 3:
        return False
    return any(rx.search(q) for rx in _MEMORY_REQUIRED)


def extract_urls(text: str) -> List[str]:
    seen: List[str] = []
    for m in _URL_RX.findall(text or ""):
        url = m.rstrip(".,;:!?")
        if url not in seen:
            seen.append(url)
    return seen


class RoutingStatus(BaseModel):
    routing_decision: str = "default"  # default|tool_only|url_content|memory
    url_count: int = 0
    memory_hint: bool = False
    active_tool_name: Optional[str] = None

    def is_trivial(self) -> bool:
        return self.routing_decision == "default"


class ContextRouter:
    def __init__(self, cache: ClassificationCache) -> None:
        self.cache = cache

    def classify_memory(self, query: str) -> bool:
        cached = self.cache.get(query)
        if cached is not None:
            return cached
        decision = needs_memory(query)
        self.cache.set(query, decision)
        return decision

    def route(self, messages: Sequence[ChatMessage], active_tool: Optional[str] = None) -> RoutingStatus:
        last_user = next((m.content or "" for m in reversed(messages) if m.role == "user"), "")
        urls = extract_urls(last_user)
        memory = self.classify_memory(last_user) if last_user else False
        if active_tool:
            decision = "tool_only"
        elif urls:
            decision = "url_content"
        elif memory:
            decision = "memory"
        else:
            decision = "default"
        return RoutingStatus(
            routing_decision=decision,
            url_count=len(urls),
            memory_hint=memory,
            active_tool_name=active_tool,
        )
