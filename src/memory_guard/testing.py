"""In-memory doubles for the backend and host contracts.

Used by the test-suite; also handy for wiring a guard before real backends
exist.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from .core.topics import message_text, tokenize
from .models.memory import CompactionSnapshot, MemoryResult


class InMemoryBackend:
    """Token-overlap recall over retained strings.

    ``fail_on`` names operations that raise; ``delay`` (seconds) is applied to
    every async operation; ``ack_delay`` only to on_compaction_pre so a single
    backend can miss the acknowledgement deadline.
    """

    def __init__(
        self,
        id: str,
        *,
        name: Optional[str] = None,
        fail_on: tuple = (),
        delay: float = 0.0,
        ack_delay: float = 0.0,
        reflect: bool = False,
        temporal: bool = False,
    ):
        self.id = id
        self.name = name or id
        self.fail_on = set(fail_on)
        self.delay = float(delay)
        self.ack_delay = float(ack_delay)
        self.items: List[Dict[str, Any]] = []
        self.calls: List[str] = []
        self.pre_events: List[Any] = []
        self.post_events: List[Any] = []
        self.started = False
        self.stopped = False
        if reflect:
            self.on_reflect = self._reflect
        if temporal:
            self.on_temporal_query = self._temporal

    async def _enter(self, op: str, delay: float = 0.0) -> None:
        self.calls.append(op)
        wait = delay or self.delay
        if wait:
            await asyncio.sleep(wait)
        if op in self.fail_on:
            raise RuntimeError(f"{self.id} {op} boom")

    def add(self, content: str, **meta: Any) -> None:
        self.items.append({"content": content, "meta": meta})

    async def on_retain(self, content: str, meta: Dict[str, Any]) -> None:
        await self._enter("on_retain")
        self.items.append({"content": content, "meta": meta})

    def _score(self, query: str, content: str) -> float:
        q = set(tokenize(query))
        if not q:
            return 0.0
        return round(len(q & set(tokenize(content))) / float(len(q)), 6)

    async def on_recall(self, query: str, opts: Dict[str, Any]) -> List[MemoryResult]:
        await self._enter("on_recall")
        out = [
            MemoryResult(content=it["content"], score=self._score(query, it["content"]), source=self.id)
            for it in self.items
        ]
        out = [r for r in out if r.score > 0.0]
        out.sort(key=lambda r: -r.score)
        limit = opts.get("limit")
        return out[:limit] if limit else out

    async def _reflect(self, topic: str) -> List[str]:
        await self._enter("on_reflect")
        return [f"{self.id}: {len(self.items)} memories about {topic}"]

    async def _temporal(self, query: str, as_of: float) -> List[Dict[str, Any]]:
        await self._enter("on_temporal_query")
        return [
            {"content": it["content"], "score": self._score(query, it["content"])}
            for it in self.items
            if it["meta"].get("ts", 0) <= as_of
        ]

    async def on_compaction_pre(self, event: Any) -> None:
        await self._enter("on_compaction_pre", self.ack_delay)
        self.pre_events.append(event)

    async def on_compaction_post(self, event: Any) -> None:
        await self._enter("on_compaction_post")
        self.post_events.append(event)

    async def start(self) -> None:
        await self._enter("start")
        self.started = True

    async def stop(self) -> None:
        self.stopped = True
        await self._enter("stop")

    async def health_check(self) -> Dict[str, Any]:
        if "health_check" in self.fail_on:
            return {"ok": False, "error": f"{self.id} unhealthy"}
        return {"ok": True}


class StaticHost:
    """Host double: a mutable message list that compact() truncates."""

    def __init__(self, messages: Optional[List[Any]] = None, *, keep: int = 1, fail: bool = False):
        self.messages: List[Any] = list(messages or [])
        self.tools: List[Any] = []
        self.context: Dict[str, Any] = {"model": "test"}
        self.keep = keep
        self.fail = fail
        self.log: List[str] = []

    def tokens(self) -> int:
        return sum(len(message_text(m).split()) for m in self.messages)

    def capture_full_state(self, session: Any) -> CompactionSnapshot:
        self.log.append("capture")
        return CompactionSnapshot.capture(
            session_id=str(session),
            messages=self.messages,
            tools=self.tools,
            context=self.context,
            token_count=self.tokens(),
        )

    async def compact(self, session: Any) -> Dict[str, Any]:
        self.log.append("compact")
        if self.fail:
            raise RuntimeError("summarizer unavailable")
        removed = max(0, len(self.messages) - self.keep)
        dropped = self.messages[:removed]
        self.messages = self.messages[removed:]
        return {
            "summary": f"{len(dropped)} messages summarized",
            "tokens_after": self.tokens(),
            "messages_removed": removed,
        }
