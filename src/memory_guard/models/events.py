from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

ANY = "*"


class EventType(str, Enum):
    MESSAGE_RECEIVED = "message:received"
    MESSAGE_SENT = "message:sent"
    TOOL_CALLED = "tool:called"
    TOOL_RESULT = "tool:result"
    AGENT_START = "agent:start"
    AGENT_END = "agent:end"
    SESSION_START = "session:start"
    SESSION_END = "session:end"
    COMPACTION_WARNING = "compaction:warning"
    COMPACTION_IMMINENT = "compaction:imminent"
    COMPACTION_PRE = "compaction:pre"
    COMPACTION_POST = "compaction:post"
    COMPACTION_FAILED = "compaction:failed"
    COMPACTION_RECOVERY = "compaction:recovery"


@dataclass(frozen=True)
class Event:
    id: str
    timestamp: float
    session_key: str
    agent_id: Optional[str]
    type: EventType
    payload: Mapping[str, Any]
    seq: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "session_key": self.session_key,
            "agent_id": self.agent_id,
            "type": self.type.value,
            "payload": dict(self.payload),
            "seq": self.seq,
        }


@dataclass(frozen=True)
class HandlerFailure:
    subscription_id: str
    error: BaseException


@dataclass(frozen=True)
class EmitReport:
    event: Event
    delivered: int
    failures: Tuple[HandlerFailure, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.failures
