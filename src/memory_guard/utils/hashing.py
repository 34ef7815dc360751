import hashlib
from typing import Any

from .json_canonical import canonical_dumps


def sha256_hex(obj: Any) -> str:
    return hashlib.sha256(canonical_dumps(obj).encode("utf-8")).hexdigest()


def fingerprint(obj: Any, length: int = 16) -> str:
    return sha256_hex(obj)[:length]
