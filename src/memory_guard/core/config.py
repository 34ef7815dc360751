"""Typed configuration for the guard and the router.

Loading (files, environment) is left to the host. What lives here is the
shape, the defaults, validation, and one explicit merge:

    agent override  >  global default

``merge_config`` replaces fields one section at a time. Backend options are
merged per backend id, field by field. Unknown keys are rejected instead of
being carried along.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Mapping, Optional

from ..errors import ConfigurationError

STRATEGIES = ("parallel", "cascade")


def _check_keys(section: str, cls: type, values: Mapping[str, Any]) -> None:
    allowed = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - allowed)
    if unknown:
        raise ConfigurationError(f"unknown {section} option(s): {', '.join(unknown)}")


@dataclass(frozen=True)
class GuardConfig:
    warning_threshold: float = 0.80
    imminent_threshold: float = 0.95
    require_ack: bool = True
    ack_timeout_ms: float = 5000.0
    recovery_topics: int = 5
    recovery_limit: int = 5

    def __post_init__(self) -> None:
        w, i = float(self.warning_threshold), float(self.imminent_threshold)
        if not (0.0 < w < i <= 1.0):
            raise ConfigurationError(
                f"thresholds must satisfy 0 < warning < imminent <= 1 (got {w}, {i})"
            )
        if not math.isfinite(float(self.ack_timeout_ms)) or self.ack_timeout_ms <= 0:
            raise ConfigurationError(f"ack_timeout_ms must be > 0 (got {self.ack_timeout_ms})")
        if self.recovery_topics < 0 or self.recovery_limit < 0:
            raise ConfigurationError("recovery_topics/recovery_limit must be >= 0")


@dataclass(frozen=True)
class BackendOptions:
    priority: int = 100
    required: bool = False
    timeout_ms: Optional[float] = None  # None -> RouterConfig.timeout_ms

    def __post_init__(self) -> None:
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise ConfigurationError(f"timeout_ms must be > 0 (got {self.timeout_ms})")


@dataclass(frozen=True)
class RouterConfig:
    fallback_on_error: bool = False
    strategy: str = "parallel"
    min_score: float = 0.0
    timeout_ms: float = 5000.0
    backends: Mapping[str, BackendOptions] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.strategy not in STRATEGIES:
            raise ConfigurationError(
                f"strategy must be one of {STRATEGIES} (got '{self.strategy}')"
            )
        if not (0.0 <= float(self.min_score) <= 1.0):
            raise ConfigurationError(f"min_score must be in [0,1] (got {self.min_score})")
        if self.timeout_ms <= 0:
            raise ConfigurationError(f"timeout_ms must be > 0 (got {self.timeout_ms})")

    def options_for(self, backend_id: str) -> BackendOptions:
        return self.backends.get(backend_id, BackendOptions())


@dataclass(frozen=True)
class AgentOverride:
    guard: Mapping[str, Any] = field(default_factory=dict)
    router: Mapping[str, Any] = field(default_factory=dict)
    backends: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class MemoryConfig:
    guard: GuardConfig = field(default_factory=GuardConfig)
    router: RouterConfig = field(default_factory=RouterConfig)
    agents: Mapping[str, AgentOverride] = field(default_factory=dict)

    def for_agent(self, agent_id: Optional[str]) -> "MemoryConfig":
        ov = self.agents.get(agent_id) if agent_id is not None else None
        if ov is None:
            return replace(self, agents={})
        merged = merge_config(self, guard=ov.guard, router=ov.router, backends=ov.backends)
        return replace(merged, agents={})


def merge_config(
    base: MemoryConfig,
    *,
    guard: Optional[Mapping[str, Any]] = None,
    router: Optional[Mapping[str, Any]] = None,
    backends: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> MemoryConfig:
    """Apply overrides on top of ``base``; override values always win.

    ``router`` may not carry ``backends``; pass those separately so each
    backend's options are merged field by field instead of replaced whole.
    """
    guard = dict(guard or {})
    router = dict(router or {})
    _check_keys("guard", GuardConfig, guard)
    _check_keys("router", RouterConfig, router)
    if "backends" in router:
        raise ConfigurationError("pass backend options via backends=, not router=")

    merged_backends: Dict[str, BackendOptions] = dict(base.router.backends)
    for bid, opts in (backends or {}).items():
        opts = dict(opts)
        _check_keys(f"backend '{bid}'", BackendOptions, opts)
        merged_backends[bid] = replace(merged_backends.get(bid, BackendOptions()), **opts)

    return replace(
        base,
        guard=replace(base.guard, **guard),
        router=replace(base.router, backends=merged_backends, **router),
    )
