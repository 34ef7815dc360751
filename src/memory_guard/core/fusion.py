from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from ..models.memory import MemoryResult

# (backend priority, results in the order the backend returned them)
Batch = Tuple[int, Sequence[MemoryResult]]


def fuse(batches: Iterable[Batch], limit: Optional[int] = None) -> List[MemoryResult]:
    """
    Merge per-backend ranked lists into one deterministic list.
    Sort by score desc, tie-break by backend priority asc, then arrival order
    (batch order, then position inside the batch). Scores are not normalized.
    """
    pooled = []
    arrival = 0
    for priority, results in batches:
        for r in results or ():
            pooled.append((-float(r.score), int(priority), arrival, r))
            arrival += 1

    pooled.sort(key=lambda t: t[:3])
    ranked = [t[3] for t in pooled]
    if limit is not None:
        ranked = ranked[: max(0, int(limit))]
    return ranked


def best_score(results: Sequence[MemoryResult]) -> float:
    return max((float(r.score) for r in results), default=0.0)
