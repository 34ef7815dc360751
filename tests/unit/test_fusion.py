from memory_guard.core.fusion import best_score, fuse
from memory_guard.models import MemoryResult


def r(content, score, source):
    return MemoryResult(content=content, score=score, source=source)


def test_fused_output_sorted_by_score_desc():
    out = fuse(
        [
            (1, [r("a1", 0.4, "a"), r("a2", 0.9, "a")]),
            (2, [r("b1", 0.7, "b"), r("b2", 0.1, "b")]),
        ]
    )
    assert [x.content for x in out] == ["a2", "b1", "a1", "b2"]


def test_ties_broken_by_priority_then_arrival():
    out = fuse(
        [
            (5, [r("low-1", 0.5, "low"), r("low-2", 0.5, "low")]),
            (1, [r("high-1", 0.5, "high")]),
            (5, [r("low2-1", 0.5, "low2")]),
        ]
    )
    assert [x.content for x in out] == ["high-1", "low-1", "low-2", "low2-1"]


def test_limit_and_empty_batches():
    out = fuse([(1, []), (2, [r("x", 0.3, "b"), r("y", 0.2, "b")])], limit=1)
    assert [x.content for x in out] == ["x"]
    assert fuse([]) == []
    assert fuse([(1, [r("x", 0.3, "b")])], limit=0) == []


def test_no_normalization_across_backends():
    out = fuse([(1, [r("small", 0.2, "a")]), (2, [r("big", 0.8, "b")])])
    assert [(x.content, x.score) for x in out] == [("big", 0.8), ("small", 0.2)]
    assert best_score(out) == 0.8
    assert best_score([]) == 0.0
