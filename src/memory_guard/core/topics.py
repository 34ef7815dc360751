from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Mapping

from ..models.memory import CompactionSnapshot

_WORD = re.compile(r"[A-Za-zÀ-ÖØ-öø-ÿ0-9_]+")

STOPWORDS = frozenset(
    """
    a an and are as at be been but by can could did do does for from had has
    have he her him his how i if in into is it its just let me my no not of on
    or our out she so that the their them then there these they this those to
    up us was we were what when where which who why will with would you your
    ok okay yes please thanks thank also about like get got use using
    """.split()
)


def tokenize(text: str) -> List[str]:
    return [t.lower() for t in _WORD.findall(text or "")]


def message_text(message: Any) -> str:
    if isinstance(message, str):
        return message
    if isinstance(message, Mapping):
        content = message.get("content", "")
        if isinstance(content, (list, tuple)):
            # content blocks: keep the text parts
            return " ".join(
                str(b.get("text", "")) if isinstance(b, Mapping) else str(b) for b in content
            )
        return str(content or "")
    return str(message)


def key_topics(snapshot: CompactionSnapshot, max_topics: int = 5, min_len: int = 3) -> List[str]:
    """Highest TF-IDF terms across the snapshot's messages.

    Each message is one document; a term's weight is its tf-idf summed over
    documents. Ties resolve alphabetically so the result is deterministic.
    """
    docs = [
        [t for t in tokenize(message_text(m)) if len(t) >= min_len and t not in STOPWORDS and not t.isdigit()]
        for m in snapshot.messages
    ]
    docs = [d for d in docs if d]
    if not docs or max_topics <= 0:
        return []

    n = len(docs)
    df: Dict[str, int] = {}
    for toks in docs:
        for t in set(toks):
            df[t] = df.get(t, 0) + 1

    weight: Dict[str, float] = {}
    for toks in docs:
        inv = 1.0 / float(len(toks))
        for t in toks:
            # smooth idf: log((n+1)/(df+1)) + 1
            weight[t] = weight.get(t, 0.0) + inv * (math.log((n + 1.0) / (df[t] + 1.0)) + 1.0)

    ranked = sorted(weight.items(), key=lambda kv: (-kv[1], kv[0]))
    return [t for t, _ in ranked[:max_topics]]
