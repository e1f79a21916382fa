# toolrelay/orchestration/call_guard.py
from __future__ import annotations

import logging
from collections import Counter
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel

from toolrelay.core.metrics import TOOL_REFUSALS
from toolrelay.utils.tools import args_hash

log = logging.getLogger(__name__)


class GuardDecision(BaseModel):
    permitted: bool
    reason: Optional[str] = None  # duplicate|budget
    message: Optional[str] = None


class CallGuard:
    """Per-request ledgers that deduplicate and budget tool calls."""

    def __init__(self, duplicate_limit: int = 2, caps: Optional[Mapping[str, int]] = None) -> None:
        self.duplicate_limit = duplicate_limit
        self.caps: Dict[str, int] = dict(caps or {})
        self.exact: Counter[str] = Counter()
        self.by_name: Counter[str] = Counter()

    @staticmethod
    def key(name: str, args: Dict[str, Any]) -> str:
        return f"{name}:{args_hash(args)}"

    def check(self, name: str, args: Dict[str, Any]) -> GuardDecision:
        k = self.key(name, args)
        seen = self.exact[k]
        if seen >= self.duplicate_limit:
            log.warning({"event": "tool_call_refused", "tool": name, "reason": "duplicate", "count": seen})
            TOOL_REFUSALS.labels(tool=name, reason="duplicate").inc()
            return GuardDecision(
                permitted=False,
                reason="duplicate",
                message=(
                    f"Duplicate call refused: {name} was already called {seen} times with these exact "
                    f"arguments in this conversation turn. Use the earlier results instead of repeating the call."
                ),
            )
        cap = self.caps.get(name)
        if cap is not None and self.by_name[name] >= cap:
            log.warning({"event": "tool_call_refused", "tool": name, "reason": "budget", "cap": cap})
            TOOL_REFUSALS.labels(tool=name, reason="budget").inc()
            return GuardDecision(
                permitted=False,
                reason="budget",
                message=(
                    f"Call budget exhausted: {name} may be called at most {cap} time(s) per request. "
                    f"Answer with the information gathered so far."
                ),
            )
        self.exact[k] += 1
        self.by_name[name] += 1
        return GuardDecision(permitted=True)
