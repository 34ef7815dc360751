from .bus import EventBus, Subscription
from .client import UnifiedClient
from .config import (
    AgentOverride,
    BackendOptions,
    GuardConfig,
    MemoryConfig,
    RouterConfig,
    merge_config,
)
from .fusion import fuse
from .guard import CompactionGuard, GuardState
from .registry import BackendDescriptor, BackendRegistry, BackendState, Capability
from .topics import key_topics

__all__ = [
    "AgentOverride",
    "BackendDescriptor",
    "BackendOptions",
    "BackendRegistry",
    "BackendState",
    "Capability",
    "CompactionGuard",
    "EventBus",
    "GuardConfig",
    "GuardState",
    "MemoryConfig",
    "RouterConfig",
    "Subscription",
    "UnifiedClient",
    "fuse",
    "key_topics",
    "merge_config",
]
