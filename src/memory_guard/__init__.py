from .core import (
    BackendRegistry,
    CompactionGuard,
    EventBus,
    GuardConfig,
    MemoryConfig,
    RouterConfig,
    UnifiedClient,
)
from .errors import (
    AckTimeoutError,
    BackendError,
    CompactionError,
    ConfigurationError,
    HandlerError,
    MemoryGuardError,
)
from .models import ANY, EventType, MemoryResult

__version__ = "2026.1.0"

__all__ = [
    "ANY",
    "AckTimeoutError",
    "BackendError",
    "BackendRegistry",
    "CompactionError",
    "CompactionGuard",
    "ConfigurationError",
    "EventBus",
    "EventType",
    "GuardConfig",
    "HandlerError",
    "MemoryConfig",
    "MemoryGuardError",
    "MemoryResult",
    "RouterConfig",
    "UnifiedClient",
    "__version__",
]
