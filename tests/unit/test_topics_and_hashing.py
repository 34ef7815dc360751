from memory_guard.core.topics import key_topics, message_text
from memory_guard.models import CompactionOutcome, CompactionSnapshot, MemoryResult
from memory_guard.utils.hashing import fingerprint, sha256_hex


def test_sha256_hex_stable():
    assert sha256_hex({"a": 1, "b": 2}) == sha256_hex({"b": 2, "a": 1})
    assert len(fingerprint({"a": 1})) == 16


def test_key_topics_deterministic_and_filtered():
    snap = CompactionSnapshot.capture(
        "s",
        messages=[
            {"role": "user", "content": "The kafka consumer lags behind"},
            {"role": "assistant", "content": [{"type": "text", "text": "kafka lag fixed"}]},
            "ok thanks",
            {"role": "user", "content": "42 42 42"},
        ],
    )
    topics = key_topics(snap, max_topics=3)
    assert topics[0] == "kafka"
    assert "the" not in topics and "42" not in topics
    assert key_topics(snap, max_topics=3) == topics
    assert key_topics(CompactionSnapshot.capture("s"), max_topics=3) == []


def test_message_text_shapes():
    assert message_text("plain") == "plain"
    assert message_text({"content": None}) == ""
    assert message_text({"content": ["a", {"text": "b"}]}) == "a b"


def test_snapshot_is_detached_from_live_session():
    live = [{"content": "x"}]
    snap = CompactionSnapshot.capture("s", messages=live, token_count=1)
    live[0]["content"] = "mutated"
    live.append({"content": "y"})
    assert snap.messages == ({"content": "x"},)

    copy = snap.copy()
    copy.messages[0]["content"] = "z"
    assert snap.messages[0]["content"] == "x"

    from_map = CompactionSnapshot.from_host({"messages": live, "token_count": 5}, "fallback-id")
    assert from_map.session_id == "fallback-id" and from_map.token_count == 5


def test_result_and_outcome_coercion():
    r = MemoryResult.from_backend({"content": "c", "score": "0.5", "metadata": {"k": 1}}, "b1")
    assert r == MemoryResult("c", 0.5, "b1", {"k": 1})
    assert MemoryResult.from_backend(MemoryResult("c", 1, "other"), "b2").source == "b2"

    out = CompactionOutcome.from_host({"summary": None, "tokens_after": "10", "messages_removed": 2})
    assert out == CompactionOutcome("", 10, 2)
