from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from ..errors import AckTimeoutError, BackendError
from .memory import MemoryResult


@dataclass(frozen=True)
class RetainReport:
    succeeded: Tuple[str, ...]
    failures: Mapping[str, BackendError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class RecallResult:
    results: Tuple[MemoryResult, ...]
    consulted: Tuple[str, ...]  # in consultation order, fallbacks included
    failures: Mapping[str, BackendError] = field(default_factory=dict)

    def __iter__(self):
        return iter(self.results)

    def __len__(self) -> int:
        return len(self.results)


@dataclass(frozen=True)
class ReflectResult:
    insights: Tuple[Any, ...]
    failures: Mapping[str, BackendError] = field(default_factory=dict)


@dataclass(frozen=True)
class AckReport:
    acknowledged: Tuple[str, ...]
    unacknowledged: Tuple[str, ...]  # timed out
    failures: Mapping[str, BackendError] = field(default_factory=dict)
    timeout_ms: float = 0.0
    waited: bool = True

    @property
    def complete(self) -> bool:
        return not self.unacknowledged and not self.failures

    @property
    def timeout_error(self) -> Optional[AckTimeoutError]:
        if not self.unacknowledged:
            return None
        return AckTimeoutError(self.unacknowledged, self.timeout_ms)


@dataclass(frozen=True)
class LifecycleReport:
    succeeded: Tuple[str, ...]
    failures: Mapping[str, BaseException] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass(frozen=True)
class BackendHealth:
    ok: bool
    state: str
    error: Optional[str] = None


@dataclass(frozen=True)
class HealthReport:
    ok: bool
    backends: Mapping[str, BackendHealth]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "backends": {
                bid: {"ok": h.ok, "state": h.state, "error": h.error}
                for bid, h in self.backends.items()
            },
        }


@dataclass(frozen=True)
class CompactionReport:
    session_key: str
    fingerprint: str
    summary: str
    tokens_before: int
    tokens_after: int
    messages_removed: int
    acks: AckReport
    topics: Tuple[str, ...] = ()
    recovery: Optional[RecallResult] = None
    recovery_error: Optional[BaseException] = None

    @property
    def unacknowledged(self) -> Tuple[str, ...]:
        return self.acks.unacknowledged
