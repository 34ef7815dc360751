import asyncio

import jsonschema
import pytest

from memory_guard import ANY, ConfigurationError, EventType, HandlerError
from memory_guard.core import EventBus
from memory_guard.utils.schema_validator import SchemaRegistry

pytestmark = pytest.mark.asyncio


async def test_seq_per_session_is_one_to_n():
    bus = EventBus()
    seen = {"a": [], "b": []}
    bus.subscribe(ANY, lambda e: seen[e.session_key].append(e.seq))

    for i in range(5):
        await bus.emit(EventType.MESSAGE_RECEIVED, {"i": i}, "a")
        if i % 2 == 0:
            await bus.emit(EventType.TOOL_CALLED, {"i": i}, "b")

    assert seen["a"] == [1, 2, 3, 4, 5]
    assert seen["b"] == [1, 2, 3]
    assert bus.last_seq("a") == 5
    assert bus.last_seq("unknown") == 0


async def test_interleaved_emits_keep_sequences_gapless():
    bus = EventBus()
    seen = []

    async def slow(e):
        await asyncio.sleep(0)
        seen.append((e.session_key, e.seq))

    bus.subscribe(EventType.MESSAGE_SENT, slow)
    await asyncio.gather(
        *[bus.emit("message:sent", {}, f"s{i % 3}") for i in range(30)]
    )
    for key in ("s0", "s1", "s2"):
        assert sorted(seq for k, seq in seen if k == key) == list(range(1, 11))


async def test_exact_subscribers_run_before_wildcard_in_registration_order():
    bus = EventBus()
    order = []
    bus.subscribe(ANY, lambda e: order.append("any-1"))
    bus.subscribe(EventType.AGENT_START, lambda e: order.append("exact-1"))
    bus.subscribe(ANY, lambda e: order.append("any-2"))
    bus.subscribe("agent:start", lambda e: order.append("exact-2"))
    bus.subscribe(EventType.AGENT_END, lambda e: order.append("other"))

    rep = await bus.emit(EventType.AGENT_START, {}, "s")

    assert order == ["exact-1", "exact-2", "any-1", "any-2"]
    assert rep.delivered == 4
    assert rep.ok


async def test_emit_waits_for_every_handler():
    bus = EventBus()
    done = []

    async def handler(e):
        await asyncio.sleep(0.01)
        done.append(e.id)

    bus.subscribe(EventType.SESSION_END, handler)
    rep = await bus.emit(EventType.SESSION_END, {}, "s")
    assert done == [rep.event.id]


async def test_unsubscribe_during_dispatch_applies_to_next_emit_only():
    bus = EventBus()
    calls = []
    holder = {}

    def first(e):
        calls.append(("first", e.seq))
        holder["unsub"]()

    def second(e):
        calls.append(("second", e.seq))

    bus.subscribe(EventType.MESSAGE_RECEIVED, first)
    holder["unsub"] = bus.subscribe(EventType.MESSAGE_RECEIVED, second)

    await bus.emit(EventType.MESSAGE_RECEIVED, {}, "s")
    await bus.emit(EventType.MESSAGE_RECEIVED, {}, "s")

    assert calls == [("first", 1), ("second", 1), ("first", 2)]


async def test_unsubscribe_twice_is_noop():
    bus = EventBus()
    unsub = bus.subscribe(ANY, lambda e: None)
    other = bus.subscribe(ANY, lambda e: None)
    unsub()
    unsub()
    assert bus.subscriber_count(ANY) == 1
    other()
    assert bus.subscriber_count(ANY) == 0


async def test_failing_handler_is_isolated_and_reported():
    bus = EventBus()
    ran = []

    def bad(e):
        raise RuntimeError("nope")

    bus.subscribe(EventType.TOOL_RESULT, bad)
    bus.subscribe(EventType.TOOL_RESULT, lambda e: ran.append(e.seq))

    rep = await bus.emit(EventType.TOOL_RESULT, {}, "s")

    assert ran == [1]
    assert not rep.ok
    assert len(rep.failures) == 1
    assert isinstance(rep.failures[0].error, RuntimeError)
    assert rep.failures[0].subscription_id.startswith("sub-")


async def test_strict_mode_raises_after_all_handlers_ran():
    bus = EventBus(strict=True)
    ran = []

    def bad(e):
        raise ValueError("x")

    bus.subscribe(ANY, bad)
    bus.subscribe(ANY, lambda e: ran.append(1))

    with pytest.raises(HandlerError) as ei:
        await bus.emit(EventType.SESSION_START, {}, "s")
    assert ran == [1]
    assert len(ei.value.report.failures) == 1

    # per-call override
    rep = await bus.emit(EventType.SESSION_START, {}, "s", strict=False)
    assert rep.event.seq == 2


async def test_handler_objects_with_handle_method():
    class Recorder:
        def __init__(self):
            self.events = []

        async def handle(self, event):
            self.events.append(event.type)

    bus = EventBus()
    rec = Recorder()
    bus.subscribe(EventType.COMPACTION_WARNING, rec)
    await bus.emit(EventType.COMPACTION_WARNING, {"ratio": 0.9, "threshold": 0.8}, "s")
    assert rec.events == [EventType.COMPACTION_WARNING]


async def test_unknown_pattern_is_rejected():
    bus = EventBus()
    with pytest.raises(ConfigurationError):
        bus.subscribe("compaction:later", lambda e: None)


async def test_schema_rejects_bad_payload_before_seq_assignment():
    bus = EventBus(schemas=SchemaRegistry())
    seen = []
    bus.subscribe(ANY, seen.append)

    with pytest.raises(jsonschema.ValidationError):
        await bus.emit(EventType.COMPACTION_POST, {"summary": "x"}, "s")

    assert seen == []
    assert bus.last_seq("s") == 0

    # event types without a schema pass through untouched
    await bus.emit(EventType.MESSAGE_SENT, {"anything": object()}, "s")
    assert bus.last_seq("s") == 1
