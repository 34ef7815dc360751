from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from ..errors import ConfigurationError, HandlerError
from ..metrics import EVENTS, HANDLER_FAILURES
from ..models.events import ANY, EmitReport, Event, EventType, HandlerFailure
from ..utils.calls import call_maybe_async
from ..utils.schema_validator import SchemaRegistry, validate_payload

logger = logging.getLogger(__name__)

Pattern = Union[EventType, str]


@dataclass
class Subscription:
    id: str
    pattern: str
    handler: Callable[[Event], Any]
    active: bool = True


def _as_callable(handler: Any) -> Callable[[Event], Any]:
    # objects exposing handle(event) are accepted alongside plain callables
    handle = getattr(handler, "handle", None)
    if callable(handle):
        return handle
    if callable(handler):
        return handler
    raise ConfigurationError(f"handler {handler!r} is neither callable nor has handle()")


def _normalize_pattern(pattern: Pattern) -> str:
    if pattern == ANY:
        return ANY
    try:
        return EventType(pattern).value
    except ValueError:
        raise ConfigurationError(f"unknown event pattern '{pattern}'") from None


class EventBus:
    """
    Ordered publish/subscribe with per-session sequencing.
    - emit() returns only after every dispatched handler finished
    - handlers of one event run one after another, in registration order,
      exact-type subscriptions first, then wildcard ones
    - dispatch works on a snapshot taken at emission time
    - a failing handler never stops the others; strict mode raises afterwards
    """

    def __init__(self, *, strict: bool = False, schemas: Optional[SchemaRegistry] = None):
        self.strict = bool(strict)
        self.schemas = schemas
        self._by_pattern: Dict[str, List[Subscription]] = {}
        self._seq: Dict[str, int] = {}
        self._seq_lock = threading.Lock()
        self._next_sub = 0

    def subscribe(self, pattern: Pattern, handler: Any) -> Callable[[], None]:
        key = _normalize_pattern(pattern)
        self._next_sub += 1
        sub = Subscription(
            id=f"sub-{self._next_sub}", pattern=key, handler=_as_callable(handler)
        )
        self._by_pattern.setdefault(key, []).append(sub)

        def unsubscribe() -> None:
            if not sub.active:
                return
            sub.active = False
            # rebuild instead of mutating: an in-flight snapshot keeps its list
            self._by_pattern[key] = [s for s in self._by_pattern.get(key, []) if s is not sub]

        return unsubscribe

    def subscriber_count(self, pattern: Pattern) -> int:
        return len(self._by_pattern.get(_normalize_pattern(pattern), []))

    def last_seq(self, session_key: str) -> int:
        with self._seq_lock:
            return self._seq.get(session_key, 0)

    def _next_seq(self, session_key: str) -> int:
        with self._seq_lock:
            n = self._seq.get(session_key, 0) + 1
            self._seq[session_key] = n
            return n

    def _snapshot(self, etype: EventType) -> List[Subscription]:
        return list(self._by_pattern.get(etype.value, [])) + list(
            self._by_pattern.get(ANY, [])
        )

    async def emit(
        self,
        type: Pattern,
        payload: Optional[Mapping[str, Any]],
        session_key: str,
        *,
        agent_id: Optional[str] = None,
        strict: Optional[bool] = None,
    ) -> EmitReport:
        etype = EventType(type)
        payload = dict(payload or {})
        if self.schemas is not None:
            validate_payload(payload, etype.value, self.schemas)

        event = Event(
            id=uuid.uuid4().hex,
            timestamp=time.time(),
            session_key=str(session_key),
            agent_id=agent_id,
            type=etype,
            payload=payload,
            seq=self._next_seq(str(session_key)),
        )
        EVENTS.labels(type=etype.value).inc()

        targets = self._snapshot(etype)
        failures: List[HandlerFailure] = []
        for sub in targets:
            try:
                await call_maybe_async(sub.handler, event)
            except Exception as exc:
                logger.warning(
                    "handler %s failed on %s (session=%s seq=%d): %s",
                    sub.id, etype.value, event.session_key, event.seq, exc,
                )
                HANDLER_FAILURES.labels(type=etype.value).inc()
                failures.append(HandlerFailure(subscription_id=sub.id, error=exc))

        report = EmitReport(event=event, delivered=len(targets), failures=tuple(failures))
        if failures and (self.strict if strict is None else strict):
            raise HandlerError(report)
        return report
