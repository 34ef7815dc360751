from __future__ import annotations

import inspect
from typing import Any, Callable


async def call_maybe_async(fn: Callable[..., Any], *args: Any) -> Any:
    """Backends and hosts may hand us plain functions or coroutine functions."""
    out = fn(*args)
    if inspect.isawaitable(out):
        out = await out
    return out
