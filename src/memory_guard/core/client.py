from __future__ import annotations

import asyncio
import copy
import logging
import time
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from ..errors import BackendError
from ..metrics import BACKEND_FAILURES, LAT, UNACKED
from ..models.events import Event
from ..models.memory import MemoryResult
from ..models.reports import AckReport, RecallResult, ReflectResult, RetainReport
from ..utils.calls import call_maybe_async
from .config import RouterConfig
from .fusion import Batch, fuse
from .registry import BackendDescriptor, BackendRegistry, Capability

logger = logging.getLogger(__name__)

Settled = List[Tuple[BackendDescriptor, Union[Any, BackendError]]]


class UnifiedClient:
    """
    One memory interface over every registered backend.
    - fan-outs start every backend call before awaiting any of them
    - each call runs under its own timeout
    - a failing backend is isolated and reported; only `required` backends
      can fail a retain
    - ranked output always goes through fusion.fuse
    """

    def __init__(self, registry: BackendRegistry, config: Optional[RouterConfig] = None):
        self.registry = registry
        self.config = config or registry.config
        self._background: Set[asyncio.Task] = set()

    def _timeout_s(self, d: BackendDescriptor, timeout_ms: Optional[float]) -> float:
        ms = timeout_ms if timeout_ms is not None else (d.timeout_ms or self.config.timeout_ms)
        return float(ms) / 1000.0

    async def _invoke(
        self,
        d: BackendDescriptor,
        op: str,
        *args: Any,
        timeout_ms: Optional[float] = None,
    ) -> Any:
        t0 = time.perf_counter()
        try:
            return await asyncio.wait_for(
                call_maybe_async(d.op(op), *args), timeout=self._timeout_s(d, timeout_ms)
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            BACKEND_FAILURES.labels(backend=d.id, op=op).inc()
            logger.warning("backend %s %s failed: %r", d.id, op, exc)
            raise BackendError(d.id, op, exc) from exc
        finally:
            LAT.labels(op=op).observe((time.perf_counter() - t0) * 1000.0)

    async def _fan_out(
        self,
        descs: Sequence[BackendDescriptor],
        call: Callable[[BackendDescriptor], Awaitable[Any]],
    ) -> Settled:
        # create every task first, then join
        tasks = [asyncio.ensure_future(call(d)) for d in descs]
        settled = await asyncio.gather(*tasks, return_exceptions=True)
        out: Settled = []
        for d, res in zip(descs, settled):
            if isinstance(res, BaseException) and not isinstance(res, BackendError):
                if not isinstance(res, Exception):
                    raise res
                res = BackendError(d.id, "call", res)
            out.append((d, res))
        return out

    def _tag(self, d: BackendDescriptor, raw: Any, op: str) -> List[MemoryResult]:
        try:
            results = [MemoryResult.from_backend(item, d.id) for item in (raw or ())]
        except (TypeError, ValueError) as exc:
            BACKEND_FAILURES.labels(backend=d.id, op=op).inc()
            raise BackendError(d.id, op, exc) from exc
        off = [r.score for r in results if not 0.0 <= r.score <= 1.0]
        if off:
            logger.warning("backend %s returned %d score(s) outside [0,1]", d.id, len(off))
        return results

    async def _recall_one(
        self,
        d: BackendDescriptor,
        query: str,
        opts: Mapping[str, Any],
        timeout_ms: Optional[float],
    ) -> List[MemoryResult]:
        raw = await self._invoke(d, "on_recall", query, dict(opts), timeout_ms=timeout_ms)
        return self._tag(d, raw, "on_recall")

    async def retain(
        self, content: str, metadata: Optional[Mapping[str, Any]] = None
    ) -> RetainReport:
        descs = self.registry.active(Capability.RETAIN)
        meta = dict(metadata or {})
        settled = await self._fan_out(
            descs, lambda d: self._invoke(d, "on_retain", content, copy.deepcopy(meta))
        )

        ok: List[str] = []
        failures: Dict[str, BackendError] = {}
        for d, res in settled:
            if isinstance(res, BackendError):
                failures[d.id] = res
            else:
                ok.append(d.id)

        for d, res in settled:
            if isinstance(res, BackendError) and d.required:
                raise res
        return RetainReport(succeeded=tuple(ok), failures=failures)

    async def recall(
        self,
        query: str,
        *,
        backends: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        fallback_on_error: Optional[bool] = None,
        timeout_ms: Optional[float] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> RecallResult:
        fallback = self.config.fallback_on_error if fallback_on_error is None else fallback_on_error
        opts = dict(options or {})
        if limit is not None:
            opts.setdefault("limit", int(limit))

        selected = self.registry.active(Capability.RECALL, backends)
        settled = await self._fan_out(
            selected, lambda d: self._recall_one(d, query, opts, timeout_ms)
        )

        consulted = [d.id for d in selected]
        batches: List[Batch] = []
        failures: Dict[str, BackendError] = {}
        failed = 0
        for d, res in settled:
            if isinstance(res, BackendError):
                failures[d.id] = res
                failed += 1
            else:
                batches.append((d.priority, res))

        if fallback and failed:
            chain = [
                d for d in self.registry.by_priority(Capability.RECALL) if d.id not in consulted
            ]
            # one replacement per failure; a failing replacement hands over to the next
            for _ in range(failed):
                while chain:
                    d = chain.pop(0)
                    consulted.append(d.id)
                    logger.info("recall falling back to backend %s", d.id)
                    try:
                        res = await self._recall_one(d, query, opts, timeout_ms)
                    except BackendError as exc:
                        failures[d.id] = exc
                        continue
                    batches.append((d.priority, res))
                    break

        return RecallResult(
            results=tuple(fuse(batches, limit)),
            consulted=tuple(consulted),
            failures=failures,
        )

    async def search(
        self,
        query: str,
        *,
        strategy: Optional[str] = None,
        min_score: Optional[float] = None,
        limit: Optional[int] = None,
        backends: Optional[Sequence[str]] = None,
        timeout_ms: Optional[float] = None,
    ) -> RecallResult:
        strategy = strategy or self.config.strategy
        floor = float(self.config.min_score if min_score is None else min_score)

        if strategy == "parallel":
            got = await self.recall(query, backends=backends, timeout_ms=timeout_ms)
            kept = [r for r in got.results if r.score >= floor]
            if limit is not None:
                kept = kept[: max(0, int(limit))]
            return RecallResult(tuple(kept), got.consulted, got.failures)

        if strategy != "cascade":
            raise ValueError(f"unknown search strategy '{strategy}'")

        opts = {"limit": int(limit)} if limit is not None else {}
        consulted: List[str] = []
        failures: Dict[str, BackendError] = {}
        for d in self.registry.by_priority(Capability.RECALL, backends):
            consulted.append(d.id)
            try:
                res = await self._recall_one(d, query, opts, timeout_ms)
            except BackendError as exc:
                failures[d.id] = exc
                continue
            hits = [r for r in res if r.score >= floor]
            if hits:
                return RecallResult(
                    tuple(fuse([(d.priority, hits)], limit)), tuple(consulted), failures
                )
        return RecallResult((), tuple(consulted), failures)

    async def temporal_query(
        self,
        query: str,
        as_of: Any,
        *,
        backends: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        timeout_ms: Optional[float] = None,
    ) -> RecallResult:
        selected = self.registry.active(Capability.TEMPORAL, backends)

        async def one(d: BackendDescriptor) -> List[MemoryResult]:
            raw = await self._invoke(d, "on_temporal_query", query, as_of, timeout_ms=timeout_ms)
            return self._tag(d, raw, "on_temporal_query")

        settled = await self._fan_out(selected, one)
        batches = [(d.priority, res) for d, res in settled if not isinstance(res, BackendError)]
        failures = {d.id: res for d, res in settled if isinstance(res, BackendError)}
        return RecallResult(
            tuple(fuse(batches, limit)), tuple(d.id for d in selected), failures
        )

    async def reflect(self, topic: str, *, timeout_ms: Optional[float] = None) -> ReflectResult:
        descs = self.registry.active(Capability.REFLECT)
        settled = await self._fan_out(
            descs, lambda d: self._invoke(d, "on_reflect", topic, timeout_ms=timeout_ms)
        )
        insights: List[Any] = []
        failures: Dict[str, BackendError] = {}
        for d, res in settled:
            if isinstance(res, BackendError):
                failures[d.id] = res
            elif isinstance(res, (list, tuple)):
                insights.extend(res)
            elif res is not None:
                insights.append(res)
        return ReflectResult(insights=tuple(insights), failures=failures)

    async def _deliver(self, d: BackendDescriptor, op: str, event: Event) -> None:
        try:
            await call_maybe_async(d.op(op), copy.deepcopy(event))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            BACKEND_FAILURES.labels(backend=d.id, op=op).inc()
            logger.warning("backend %s %s failed: %r", d.id, op, exc)
            raise BackendError(d.id, op, exc) from exc

    async def collect_compaction_acks(self, event: Event, timeout_ms: float) -> AckReport:
        """Deliver compaction:pre and wait, bounded, for every acknowledgement.

        Backends still running at the deadline are cancelled and reported as
        unacknowledged. Cancelling the caller cancels every delivery.
        """
        descs = self.registry.active(Capability.COMPACTION_PRE)
        if not descs:
            return AckReport((), (), {}, timeout_ms=timeout_ms)

        tasks = [asyncio.ensure_future(self._deliver(d, "on_compaction_pre", event)) for d in descs]
        try:
            _, pending = await asyncio.wait(tasks, timeout=float(timeout_ms) / 1000.0)
        except asyncio.CancelledError:
            for t in tasks:
                t.cancel()
            raise

        acked: List[str] = []
        late: List[str] = []
        failures: Dict[str, BackendError] = {}
        for d, t in zip(descs, tasks):
            if t in pending:
                t.cancel()
                self._track(t)
                late.append(d.id)
                UNACKED.labels(backend=d.id).inc()
            elif t.cancelled():
                failures[d.id] = BackendError(d.id, "on_compaction_pre")
            elif t.exception() is not None:
                failures[d.id] = t.exception()
            else:
                acked.append(d.id)
        if late:
            logger.warning(
                "compaction ack timeout after %gms, proceeding without: %s",
                timeout_ms, ", ".join(late),
            )
        return AckReport(tuple(acked), tuple(late), failures, timeout_ms=timeout_ms)

    def notify_compaction_pre(self, event: Event) -> AckReport:
        """Fire-and-forget delivery used when acknowledgements are not required."""
        descs = self.registry.active(Capability.COMPACTION_PRE)
        for d in descs:
            self._track(asyncio.ensure_future(self._deliver(d, "on_compaction_pre", event)))
        return AckReport((), (), {}, waited=False)

    async def notify_compaction_post(
        self, event: Event, timeout_ms: Optional[float] = None
    ) -> Dict[str, BackendError]:
        descs = self.registry.active(Capability.COMPACTION_POST)

        async def one(d: BackendDescriptor) -> None:
            try:
                await asyncio.wait_for(
                    self._deliver(d, "on_compaction_post", event),
                    timeout=self._timeout_s(d, timeout_ms),
                )
            except asyncio.TimeoutError as exc:
                logger.warning("backend %s on_compaction_post timed out", d.id)
                raise BackendError(d.id, "on_compaction_post", exc) from exc

        settled = await self._fan_out(descs, one)
        return {d.id: res for d, res in settled if isinstance(res, BackendError)}

    def _track(self, task: asyncio.Task) -> None:
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.debug("background delivery failed: %r", t.exception())

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait for background deliveries (cancelled stragglers included)."""
        while True:
            pending = [t for t in self._background if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
