from __future__ import annotations

from prometheus_client import Counter, Histogram

REQS = Counter("memory_guard_requests_total", "Total API requests", ["endpoint"])
LAT = Histogram("memory_guard_latency_ms", "Latency ms", ["op"])

EVENTS = Counter("memory_guard_events_total", "Events emitted", ["type"])
HANDLER_FAILURES = Counter(
    "memory_guard_handler_failures_total", "Event handler failures", ["type"]
)
BACKEND_FAILURES = Counter(
    "memory_guard_backend_failures_total", "Backend operation failures", ["backend", "op"]
)
UNACKED = Counter(
    "memory_guard_unacknowledged_total",
    "Backends that missed the compaction acknowledgement deadline",
    ["backend"],
)
COMPACTIONS = Counter(
    "memory_guard_compactions_total", "Compaction cycles by outcome", ["outcome"]
)


def mark(endpoint: str) -> None:
    REQS.labels(endpoint=endpoint).inc()
