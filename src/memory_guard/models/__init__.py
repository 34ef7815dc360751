from .events import ANY, EmitReport, Event, EventType, HandlerFailure
from .memory import CompactionOutcome, CompactionSnapshot, MemoryResult
from .reports import (
    AckReport,
    BackendHealth,
    CompactionReport,
    HealthReport,
    LifecycleReport,
    RecallResult,
    ReflectResult,
    RetainReport,
)

__all__ = [
    "ANY",
    "AckReport",
    "BackendHealth",
    "CompactionOutcome",
    "CompactionReport",
    "CompactionSnapshot",
    "EmitReport",
    "Event",
    "EventType",
    "HandlerFailure",
    "HealthReport",
    "LifecycleReport",
    "MemoryResult",
    "RecallResult",
    "ReflectResult",
    "RetainReport",
]
