from __future__ import annotations

import json
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Mapping


def to_jsonable(x: Any) -> Any:
    """
    Deterministic conversion of event payloads and snapshots to JSON types.
    - Enum -> its value
    - dataclass -> asdict (recursive)
    - Path -> str
    - mapping/list/tuple -> recursive (keys coerced to str)
    - set/frozenset -> sorted list
    - BaseException -> "Type: message"
    """
    if x is None or isinstance(x, (bool, int, float, str)):
        return x

    if isinstance(x, Enum):
        return to_jsonable(x.value)

    if isinstance(x, Path):
        return str(x)

    if is_dataclass(x) and not isinstance(x, type):
        return to_jsonable(asdict(x))

    if isinstance(x, Mapping):
        return {str(k): to_jsonable(v) for k, v in x.items()}

    if isinstance(x, (list, tuple)):
        return [to_jsonable(v) for v in x]

    if isinstance(x, (set, frozenset)):
        return sorted((to_jsonable(v) for v in x), key=canonical_dumps)

    if isinstance(x, BaseException):
        return f"{type(x).__name__}: {x}"

    d = getattr(x, "__dict__", None)
    if isinstance(d, dict):
        return to_jsonable({k: v for k, v in d.items() if not str(k).startswith("_")})

    return str(x)


def canonical_dumps(obj: Any) -> str:
    """sort_keys, no whitespace, UTF-8 kept as-is."""
    return json.dumps(
        to_jsonable(obj), sort_keys=True, ensure_ascii=False, separators=(",", ":")
    )
