"""Ordering of exact-similarity hits.

Scores are clamped to [0, 1]. Hits whose scores are within ``TIE_EPSILON``
of the first hit of their run are treated as tied and ordered newest
first, then by id.
"""

from __future__ import annotations

from collections.abc import Iterable

from semstore.domain.entities import ContentRecord

TIE_EPSILON = 1e-6


def clamp_score(score: float) -> float:
    return min(1.0, max(0.0, score))


def rank_hits(
    hits: Iterable[tuple[ContentRecord, float]],
    threshold: float,
    limit: int,
    epsilon: float = TIE_EPSILON,
) -> list[tuple[ContentRecord, float]]:
    """Filter *hits* by *threshold*, sort best first, break ties by recency."""
    kept = [(record, clamp_score(score)) for record, score in hits]
    kept = [(record, score) for record, score in kept if score >= threshold]
    kept.sort(key=lambda h: (-h[1], -h[0].timestamp.timestamp(), h[0].id))

    ordered: list[tuple[ContentRecord, float]] = []
    i = 0
    while i < len(kept) and len(ordered) < limit:
        head = kept[i][1]
        j = i + 1
        while j < len(kept) and head - kept[j][1] <= epsilon:
            j += 1
        run = sorted(kept[i:j], key=lambda h: (-h[0].timestamp.timestamp(), h[0].id))
        ordered.extend(run)
        i = j
    return ordered[:limit]
