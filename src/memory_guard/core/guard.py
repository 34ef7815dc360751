"""Protected compaction.

One cycle of ``CompactionGuard.handle_compaction``::

    CAPTURING_PRE   capture an immutable snapshot, emit compaction:pre
    AWAITING_ACKS   bounded wait for backends that capture pre-compaction state
    COMPACTING      the host's compact(), exactly once, never retried
    NOTIFYING_POST  emit compaction:post, notify backends, best-effort recovery
    IDLE

Failures in capture or compact, or a caller giving up before compact()
starts, pass through FAILED: compaction:failed is emitted, the guard returns
to IDLE, and the error is raised to the caller. Host output the event schemas
would reject counts as a failure of the stage that produced it.

A caller cancelling during compact() is deferred until the cycle ends. If
compact() then fails, the failure is still surfaced but the caller sees
CancelledError rather than CompactionError.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from ..errors import CompactionError, ConfigurationError
from ..metrics import COMPACTIONS
from ..models.events import EventType
from ..models.memory import CompactionOutcome, CompactionSnapshot
from ..models.reports import AckReport, CompactionReport, RecallResult
from ..utils.calls import call_maybe_async
from ..utils.hashing import fingerprint
from .bus import EventBus
from .client import UnifiedClient
from .config import GuardConfig
from .topics import key_topics

logger = logging.getLogger(__name__)


class GuardState(str, Enum):
    IDLE = "idle"
    WARNING_ISSUED = "warning_issued"
    IMMINENT_ISSUED = "imminent_issued"
    CAPTURING_PRE = "capturing_pre"
    AWAITING_ACKS = "awaiting_acks"
    COMPACTING = "compacting"
    NOTIFYING_POST = "notifying_post"
    FAILED = "failed"


CYCLE_STATES = frozenset(
    {
        GuardState.CAPTURING_PRE,
        GuardState.AWAITING_ACKS,
        GuardState.COMPACTING,
        GuardState.NOTIFYING_POST,
        GuardState.FAILED,
    }
)


class CompactionHost(Protocol):
    def capture_full_state(self, session: Any) -> Any: ...

    def compact(self, session: Any) -> Any: ...


@dataclass
class _Crossing:
    warned: bool = False
    imminent: bool = False


def session_key_of(session: Any) -> str:
    for attr in ("key", "session_key", "id", "session_id"):
        v = getattr(session, attr, None)
        if v is not None:
            return str(v)
    if isinstance(session, dict):
        for k in ("key", "session_key", "id", "session_id"):
            if session.get(k) is not None:
                return str(session[k])
    return str(session)


class CompactionGuard:
    def __init__(
        self,
        bus: EventBus,
        client: UnifiedClient,
        host: CompactionHost,
        config: Optional[GuardConfig] = None,
        *,
        agent_id: Optional[str] = None,
    ):
        for name in ("capture_full_state", "compact"):
            if not callable(getattr(host, name, None)):
                raise ConfigurationError(f"host must provide {name}(session)")
        self.bus = bus
        self.client = client
        self.host = host
        self.config = config or GuardConfig()
        self.agent_id = agent_id
        self.state = GuardState.IDLE
        self.transitions: List[GuardState] = []
        self._crossings: Dict[str, _Crossing] = {}
        self._cycle = asyncio.Lock()

    def _enter(self, state: GuardState) -> None:
        logger.debug("guard %s -> %s", self.state.value, state.value)
        self.state = state
        self.transitions.append(state)

    async def _emit(self, etype: EventType, payload: Dict[str, Any], key: str):
        # protocol events never abort on observer failures
        return await self.bus.emit(etype, payload, key, agent_id=self.agent_id, strict=False)

    async def observe_usage(self, session_key: str, ratio: float) -> List[EventType]:
        """Evaluate the host's context-usage ratio against both thresholds.

        Each threshold fires once per upward crossing and re-arms only when the
        ratio falls back below it.
        """
        r = float(ratio)
        if not math.isfinite(r) or r < 0.0:
            raise ValueError(f"usage ratio must be a finite number >= 0 (got {ratio!r})")

        cfg = self.config
        c = self._crossings.setdefault(session_key, _Crossing())
        in_cycle = self.state in CYCLE_STATES
        emitted: List[EventType] = []

        if r < cfg.warning_threshold:
            c.warned = c.imminent = False
            if not in_cycle and self.state is not GuardState.IDLE:
                self._enter(GuardState.IDLE)
        elif r < cfg.imminent_threshold:
            c.imminent = False
            if not in_cycle and self.state is GuardState.IMMINENT_ISSUED:
                self._enter(GuardState.WARNING_ISSUED)

        if r >= cfg.warning_threshold and not c.warned:
            c.warned = True
            await self._emit(
                EventType.COMPACTION_WARNING,
                {"ratio": r, "threshold": cfg.warning_threshold},
                session_key,
            )
            emitted.append(EventType.COMPACTION_WARNING)
            if not in_cycle:
                self._enter(GuardState.WARNING_ISSUED)

        if r >= cfg.imminent_threshold and not c.imminent:
            c.imminent = True
            await self._emit(
                EventType.COMPACTION_IMMINENT,
                {"ratio": r, "threshold": cfg.imminent_threshold},
                session_key,
            )
            emitted.append(EventType.COMPACTION_IMMINENT)
            if not in_cycle:
                self._enter(GuardState.IMMINENT_ISSUED)

        return emitted

    async def handle_compaction(
        self, session: Any, *, session_key: Optional[str] = None
    ) -> CompactionReport:
        key = session_key or session_key_of(session)
        async with self._cycle:
            try:
                return await self._run_cycle(session, key)
            finally:
                if self.state in CYCLE_STATES:
                    logger.error("compaction of %s left the guard in %s", key, self.state.value)
                    self._enter(GuardState.IDLE)

    async def _surface_failure(self, key: str, stage: str, exc: BaseException) -> None:
        self._enter(GuardState.FAILED)
        COMPACTIONS.labels(outcome="failed").inc()
        logger.error("compaction of %s failed at %s: %r", key, stage, exc)
        try:
            await self._emit(
                EventType.COMPACTION_FAILED,
                {"stage": stage, "error": str(exc), "error_type": type(exc).__name__},
                key,
            )
        finally:
            self._enter(GuardState.IDLE)

    async def _fail(
        self, key: str, stage: str, exc: BaseException, *, interrupted: bool = False
    ) -> None:
        await self._surface_failure(key, stage, exc)
        if interrupted:
            # the caller's cancellation outranks the failure
            raise asyncio.CancelledError() from exc
        raise CompactionError(key, stage, exc) from exc

    async def _run_cycle(self, session: Any, key: str) -> CompactionReport:
        cfg = self.config

        self._enter(GuardState.CAPTURING_PRE)
        try:
            try:
                raw = await call_maybe_async(self.host.capture_full_state, session)
                snapshot = CompactionSnapshot.from_host(raw, key)
                payload = snapshot.to_payload()
                fp = fingerprint(payload)
                pre = await self._emit(
                    EventType.COMPACTION_PRE,
                    {
                        "session_id": snapshot.session_id,
                        "fingerprint": fp,
                        "token_count": snapshot.token_count,
                        "message_count": len(snapshot.messages),
                        "tool_count": len(snapshot.tools),
                        "snapshot": payload,
                    },
                    key,
                )
            except Exception as exc:
                await self._fail(key, "capture", exc)
        except asyncio.CancelledError as exc:
            await self._surface_failure(key, "capture", exc)
            raise

        self._enter(GuardState.AWAITING_ACKS)
        try:
            if cfg.require_ack:
                acks: AckReport = await self.client.collect_compaction_acks(
                    pre.event, cfg.ack_timeout_ms
                )
            else:
                acks = self.client.notify_compaction_pre(pre.event)
        except asyncio.CancelledError as exc:
            await self._surface_failure(key, "ack", exc)
            raise

        self._enter(GuardState.COMPACTING)
        outcome_raw, interrupted = await self._compact_once(session, key)
        try:
            outcome = CompactionOutcome.from_host(outcome_raw)
        except (TypeError, ValueError) as exc:
            await self._fail(key, "compact", exc, interrupted=interrupted)

        self._enter(GuardState.NOTIFYING_POST)
        try:
            post = await self._emit(
                EventType.COMPACTION_POST,
                {
                    "summary": outcome.summary,
                    "tokens_before": snapshot.token_count,
                    "tokens_after": outcome.tokens_after,
                    "messages_removed": outcome.messages_removed,
                },
                key,
            )
        except Exception as exc:
            await self._fail(key, "compact", exc, interrupted=interrupted)
        post_failures = await self.client.notify_compaction_post(post.event)
        if post_failures:
            logger.warning(
                "compaction:post delivery failed for: %s", ", ".join(sorted(post_failures))
            )
        topics, recovery, recovery_error = await self._recover(key, snapshot)

        self._enter(GuardState.IDLE)
        self._crossings.pop(key, None)
        COMPACTIONS.labels(outcome="ok").inc()
        logger.info(
            "compacted %s: %d -> %d tokens, %d messages removed, unacknowledged=%s",
            key, snapshot.token_count, outcome.tokens_after, outcome.messages_removed,
            list(acks.unacknowledged),
        )

        report = CompactionReport(
            session_key=key,
            fingerprint=fp,
            summary=outcome.summary,
            tokens_before=snapshot.token_count,
            tokens_after=outcome.tokens_after,
            messages_removed=outcome.messages_removed,
            acks=acks,
            topics=topics,
            recovery=recovery,
            recovery_error=recovery_error,
        )
        if interrupted:
            raise asyncio.CancelledError()
        return report

    async def _compact_once(self, session: Any, key: str) -> Tuple[Any, bool]:
        """Run host.compact to completion; outside cancellation only gets deferred."""
        task = asyncio.ensure_future(call_maybe_async(self.host.compact, session))
        interrupted = False
        while True:
            try:
                return await asyncio.shield(task), interrupted
            except asyncio.CancelledError as exc:
                if task.cancelled():
                    await self._fail(key, "compact", exc, interrupted=interrupted)
                interrupted = True
                logger.warning("caller cancelled during compaction of %s; finishing first", key)
            except Exception as exc:
                await self._fail(key, "compact", exc, interrupted=interrupted)

    async def _recover(
        self, key: str, snapshot: CompactionSnapshot
    ) -> Tuple[Tuple[str, ...], Optional[RecallResult], Optional[BaseException]]:
        cfg = self.config
        topics = tuple(key_topics(snapshot, cfg.recovery_topics))
        if not topics or cfg.recovery_limit == 0:
            return topics, None, None
        try:
            got = await self.client.recall(" ".join(topics), limit=cfg.recovery_limit)
            await self._emit(
                EventType.COMPACTION_RECOVERY,
                {"topics": list(topics), "results": [r.to_dict() for r in got.results]},
                key,
            )
        except Exception as exc:
            logger.warning("post-compaction recovery for %s failed: %r", key, exc)
            return topics, None, exc
        return topics, got, None
