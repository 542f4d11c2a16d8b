"""Pure helpers for retention, eviction and orphan detection.

The engine supplies the id sets; these functions only decide what goes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone


@dataclass
class OrphanSet:
    """Rows in the vector database that no longer have an owner."""

    vectors: set[str] = field(default_factory=set)
    nodes: set[str] = field(default_factory=set)

    @property
    def all_ids(self) -> set[str]:
        return self.vectors | self.nodes

    def __bool__(self) -> bool:
        return bool(self.vectors or self.nodes)


def find_orphans(content_ids: set[str], vector_ids: set[str], node_ids: set[str]) -> OrphanSet:
    """Vectors without content; nodes without content or without a vector."""
    return OrphanSet(
        vectors=vector_ids - content_ids,
        nodes={n for n in node_ids if n not in content_ids or n not in vector_ids},
    )


def retention_cutoff(now: datetime, retention_days: int) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now - timedelta(days=retention_days)


def excess_count(vector_count: int, capacity: int) -> int:
    """How many records capacity eviction must delete."""
    return max(0, vector_count - capacity)
