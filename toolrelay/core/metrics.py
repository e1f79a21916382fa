# toolrelay/core/metrics.py
from __future__ import annotations

from prometheus_client import Counter, Gauge

NAMESPACE = "toolrelay"

ROUNDS = Counter(f"{NAMESPACE}_rounds_total", "Model calls issued by the iteration controller")
STREAMS = Counter(f"{NAMESPACE}_streams_total", "Finished relay streams by terminal path", ["outcome"])
ACTIVE_STREAMS = Gauge(f"{NAMESPACE}_streams_active", "Relay streams currently open")
TOOL_DISPATCHES = Counter(f"{NAMESPACE}_tool_dispatch_total", "Tool handler invocations", ["tool", "outcome"])
TOOL_REFUSALS = Counter(f"{NAMESPACE}_tool_refusals_total", "Tool calls refused by the call guard", ["tool", "reason"])
TRUNCATED_CALLS = Counter(f"{NAMESPACE}_tool_calls_truncated_total", "Tool calls dropped by the per-round cap")
