from .prom import (
    BACKEND_FAILURES,
    COMPACTIONS,
    EVENTS,
    HANDLER_FAILURES,
    LAT,
    REQS,
    UNACKED,
    mark,
)

__all__ = [
    "BACKEND_FAILURES",
    "COMPACTIONS",
    "EVENTS",
    "HANDLER_FAILURES",
    "LAT",
    "REQS",
    "UNACKED",
    "mark",
]
