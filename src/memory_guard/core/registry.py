from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntFlag
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from ..errors import ConfigurationError
from ..models.reports import BackendHealth, HealthReport, LifecycleReport
from ..utils.calls import call_maybe_async
from .config import BackendOptions, RouterConfig

logger = logging.getLogger(__name__)


class Capability(IntFlag):
    NONE = 0
    RETAIN = 1
    RECALL = 2
    REFLECT = 4
    TEMPORAL = 8
    COMPACTION_PRE = 16
    COMPACTION_POST = 32
    LIFECYCLE = 64
    HEALTH = 128


# capability -> backend method names that provide it
CAPABILITY_SLOTS = {
    Capability.RETAIN: ("on_retain",),
    Capability.RECALL: ("on_recall",),
    Capability.REFLECT: ("on_reflect",),
    Capability.TEMPORAL: ("on_temporal_query",),
    Capability.COMPACTION_PRE: ("on_compaction_pre",),
    Capability.COMPACTION_POST: ("on_compaction_post",),
    Capability.LIFECYCLE: ("start", "stop"),
    Capability.HEALTH: ("health_check",),
}
REQUIRED = Capability.RETAIN | Capability.RECALL


class BackendState(str, Enum):
    REGISTERED = "registered"
    STARTED = "started"
    STOPPED = "stopped"


@dataclass
class BackendDescriptor:
    id: str
    name: str
    capabilities: Capability
    priority: int
    required: bool
    timeout_ms: Optional[float]
    order: int  # registration index
    ops: Dict[str, Callable[..., Any]] = field(repr=False, default_factory=dict)
    state: BackendState = BackendState.REGISTERED
    available: bool = True
    error: Optional[BaseException] = None

    def supports(self, cap: Capability) -> bool:
        return bool(self.capabilities & cap)

    @property
    def active(self) -> bool:
        return self.available and self.state is not BackendState.STOPPED

    def op(self, name: str) -> Callable[..., Any]:
        return self.ops[name]


def detect_capabilities(backend: Any) -> Dict[str, Callable[..., Any]]:
    ops: Dict[str, Callable[..., Any]] = {}
    for names in CAPABILITY_SLOTS.values():
        for name in names:
            fn = getattr(backend, name, None)
            if callable(fn):
                ops[name] = fn
    return ops


def _caps_from_ops(ops: Dict[str, Callable[..., Any]]) -> Capability:
    caps = Capability.NONE
    for cap, names in CAPABILITY_SLOTS.items():
        if any(n in ops for n in names):
            caps |= cap
    return caps


class BackendRegistry:
    """Backend descriptors, capability flags and lifecycle.

    Capabilities are detected once at register() and the bound operations are
    cached on the descriptor; calls never probe the backend object again.
    """

    def __init__(self, config: Optional[RouterConfig] = None):
        self.config = config or RouterConfig()
        self._backends: Dict[str, BackendDescriptor] = {}

    def register(
        self,
        backend: Any,
        *,
        priority: Optional[int] = None,
        required: Optional[bool] = None,
        timeout_ms: Optional[float] = None,
    ) -> BackendDescriptor:
        bid = getattr(backend, "id", None)
        if not isinstance(bid, str) or not bid:
            raise ConfigurationError(f"backend {backend!r} has no string id")
        if bid in self._backends:
            raise ConfigurationError(f"backend id '{bid}' is already registered")

        ops = detect_capabilities(backend)
        caps = _caps_from_ops(ops)
        if (caps & REQUIRED) != REQUIRED:
            raise ConfigurationError(f"backend '{bid}' must implement on_retain and on_recall")

        defaults: BackendOptions = self.config.options_for(bid)
        desc = BackendDescriptor(
            id=bid,
            name=str(getattr(backend, "name", None) or bid),
            capabilities=caps,
            priority=int(defaults.priority if priority is None else priority),
            required=bool(defaults.required if required is None else required),
            timeout_ms=defaults.timeout_ms if timeout_ms is None else float(timeout_ms),
            order=len(self._backends),
            ops=ops,
        )
        self._backends[bid] = desc
        logger.debug("registered backend %s caps=%s priority=%d", bid, caps, desc.priority)
        return desc

    def get(self, backend_id: str) -> BackendDescriptor:
        try:
            return self._backends[backend_id]
        except KeyError:
            raise ConfigurationError(f"unknown backend '{backend_id}'") from None

    def __contains__(self, backend_id: str) -> bool:
        return backend_id in self._backends

    def __iter__(self) -> Iterator[BackendDescriptor]:
        return iter(self._backends.values())

    def __len__(self) -> int:
        return len(self._backends)

    def active(
        self, capability: Capability, ids: Optional[Sequence[str]] = None
    ) -> List[BackendDescriptor]:
        """Active backends with ``capability``, in registration order."""
        pool = self._backends.values() if ids is None else [self.get(i) for i in ids]
        return sorted(
            (d for d in pool if d.active and d.supports(capability)), key=lambda d: d.order
        )

    def by_priority(
        self, capability: Capability, ids: Optional[Sequence[str]] = None
    ) -> List[BackendDescriptor]:
        return sorted(self.active(capability, ids), key=lambda d: (d.priority, d.order))

    async def start(self) -> LifecycleReport:
        started: List[str] = []
        failures: Dict[str, BaseException] = {}
        for d in self._backends.values():
            if d.state is BackendState.STARTED:
                started.append(d.id)
                continue
            try:
                if "start" in d.ops:
                    await call_maybe_async(d.op("start"))
            except Exception as exc:
                logger.warning("backend %s failed to start, marking unavailable: %s", d.id, exc)
                d.available = False
                d.error = exc
                failures[d.id] = exc
                continue
            d.state = BackendState.STARTED
            d.available = True
            d.error = None
            started.append(d.id)
        return LifecycleReport(succeeded=tuple(started), failures=failures)

    async def stop(self) -> LifecycleReport:
        stopped: List[str] = []
        failures: Dict[str, BaseException] = {}
        for d in self._backends.values():
            try:
                if "stop" in d.ops:
                    await call_maybe_async(d.op("stop"))
            except Exception as exc:
                # keep going: one backend's failure must not leak another's resources
                logger.warning("backend %s failed to stop: %s", d.id, exc)
                failures[d.id] = exc
            else:
                stopped.append(d.id)
            finally:
                d.state = BackendState.STOPPED
        return LifecycleReport(succeeded=tuple(stopped), failures=failures)

    async def health(self) -> HealthReport:
        out: Dict[str, BackendHealth] = {}
        for d in self._backends.values():
            if not d.available:
                out[d.id] = BackendHealth(
                    ok=False, state=d.state.value, error=str(d.error) if d.error else None
                )
                continue
            if "health_check" not in d.ops:
                out[d.id] = BackendHealth(ok=d.active, state=d.state.value)
                continue
            try:
                raw = await call_maybe_async(d.op("health_check"))
            except Exception as exc:
                out[d.id] = BackendHealth(ok=False, state=d.state.value, error=str(exc))
                continue
            if isinstance(raw, dict):
                ok, err = bool(raw.get("ok", False)), raw.get("error")
            else:
                ok, err = bool(raw), None
            out[d.id] = BackendHealth(
                ok=ok, state=d.state.value, error=str(err) if err is not None else None
            )
        return HealthReport(ok=all(h.ok for h in out.values()), backends=out)
