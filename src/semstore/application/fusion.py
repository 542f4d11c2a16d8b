"""Reciprocal rank fusion of independently ranked id lists.

An item at 0-based rank ``r`` in a list contributes ``1 / (r + k)``; the
contributions are summed per id across lists. ``k`` defaults to 60.
"""

from __future__ import annotations

from collections.abc import Sequence

DEFAULT_RRF_K = 60


def reciprocal_rank_fusion(
    ranked_lists: Sequence[Sequence[str]],
    k: int = DEFAULT_RRF_K,
    limit: int | None = None,
) -> list[tuple[str, float]]:
    """Fuse *ranked_lists* into ``(id, score)`` pairs, best first.

    Ties keep first-seen order, so an id ranked earlier in an earlier list
    wins a tie.
    """
    scores: dict[str, float] = {}
    for ranked in ranked_lists:
        seen: set[str] = set()
        for rank, item_id in enumerate(ranked):
            if item_id in seen:
                continue
            seen.add(item_id)
            scores[item_id] = scores.get(item_id, 0.0) + 1.0 / (rank + k)

    order = {item_id: i for i, item_id in enumerate(scores)}
    fused = sorted(scores.items(), key=lambda x: (-x[1], order[x[0]]))
    if limit is not None:
        fused = fused[:limit]
    return fused
