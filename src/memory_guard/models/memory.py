from __future__ import annotations

import copy
import math
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple


@dataclass(frozen=True)
class MemoryResult:
    content: str
    score: float  # backends promise a comparable [0,1] domain
    source: str
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_backend(cls, raw: Any, source: str) -> "MemoryResult":
        """Tag a backend item with its source id.

        Accepts a MemoryResult (re-tagged) or a mapping with ``content`` and
        ``score`` keys; anything else is a contract violation. Non-finite
        scores cannot be ordered and are rejected.
        """
        if isinstance(raw, MemoryResult):
            out = cls(raw.content, float(raw.score), source, dict(raw.metadata))
        elif isinstance(raw, Mapping):
            out = cls(
                content=str(raw.get("content", "")),
                score=float(raw.get("score", 0.0)),
                source=source,
                metadata=dict(raw.get("metadata") or {}),
            )
        else:
            raise TypeError(f"unsupported recall item from '{source}': {type(raw).__name__}")
        if not math.isfinite(out.score):
            raise ValueError(f"non-finite score {out.score!r} from '{source}'")
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "score": self.score,
            "source": self.source,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class CompactionSnapshot:
    session_id: str
    messages: Tuple[Any, ...]
    tools: Tuple[Any, ...]
    context: Any
    token_count: int
    captured_at: float

    def __post_init__(self) -> None:
        if self.token_count < 0:
            raise ValueError(f"token_count must be >= 0 (got {self.token_count})")

    @classmethod
    def capture(
        cls,
        session_id: str,
        messages: Any = (),
        tools: Any = (),
        context: Any = None,
        token_count: int = 0,
        captured_at: Optional[float] = None,
    ) -> "CompactionSnapshot":
        # detach from the live session: later mutation there must not leak in
        return cls(
            session_id=str(session_id),
            messages=tuple(copy.deepcopy(list(messages or ()))),
            tools=tuple(copy.deepcopy(list(tools or ()))),
            context=copy.deepcopy(context),
            token_count=int(token_count),
            captured_at=float(captured_at if captured_at is not None else time.time()),
        )

    @classmethod
    def from_host(cls, raw: Any, session_id: str) -> "CompactionSnapshot":
        if isinstance(raw, CompactionSnapshot):
            return raw.copy()
        if isinstance(raw, Mapping):
            return cls.capture(
                session_id=raw.get("session_id", session_id),
                messages=raw.get("messages", ()),
                tools=raw.get("tools", ()),
                context=raw.get("context"),
                token_count=raw.get("token_count", 0),
                captured_at=raw.get("captured_at"),
            )
        raise TypeError(f"capture_full_state returned {type(raw).__name__}")

    def copy(self) -> "CompactionSnapshot":
        return copy.deepcopy(self)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "messages": copy.deepcopy(list(self.messages)),
            "tools": copy.deepcopy(list(self.tools)),
            "context": copy.deepcopy(self.context),
            "token_count": self.token_count,
            "captured_at": self.captured_at,
        }


@dataclass(frozen=True)
class CompactionOutcome:
    summary: str
    tokens_after: int
    messages_removed: int

    def __post_init__(self) -> None:
        if self.tokens_after < 0 or self.messages_removed < 0:
            raise ValueError(
                f"tokens_after/messages_removed must be >= 0 "
                f"(got {self.tokens_after}, {self.messages_removed})"
            )

    @classmethod
    def from_host(cls, raw: Any) -> "CompactionOutcome":
        if isinstance(raw, CompactionOutcome):
            return raw
        if isinstance(raw, Mapping):
            return cls(
                summary=str(raw.get("summary") or ""),
                tokens_after=int(raw.get("tokens_after", 0)),
                messages_removed=int(raw.get("messages_removed", 0)),
            )
        raise TypeError(f"compact returned {type(raw).__name__}")
