"""In-memory HNSW graph over cosine distance.

The graph mirrors the ``hnsw_index`` table: it is loaded at open and every
mutating call returns the ids of the nodes whose rows must be rewritten,
so the engine can persist them in the same transaction as the vectors.

Insertion follows the layered HNSW algorithm: greedy descent with ef=1
above the new node's level, then ``ef_construction`` beam search on each
level it joins, linking to the nearest ``M`` neighbors (``2M`` on level 0)
in both directions and pruning overfull neighbor lists to their nearest.
"""

from __future__ import annotations

import heapq
import random
from collections.abc import Iterable, Mapping, Sequence

import numpy as np
import structlog

from semstore.domain.entities import IndexNode
from semstore.infrastructure.vector.similarity import (
    cosine_distance,
    cosine_similarity,
    magnitude,
    to_array,
)

logger = structlog.get_logger(__name__)

TIE_EPSILON = 1e-6


class HNSWIndex:
    """Hierarchical navigable small-world graph keyed by vector id."""

    def __init__(
        self,
        m: int = 16,
        ef_construction: int = 200,
        ef_search: int = 50,
        max_level: int = 16,
        seed: int | None = None,
    ) -> None:
        if m < 2:
            raise ValueError("m must be at least 2")
        self.m = m
        self.m0 = 2 * m
        self.ef_construction = ef_construction
        self.ef_search = ef_search
        self.max_level = max_level
        self._rng = random.Random(seed)
        self._nodes: dict[str, IndexNode] = {}
        self._vectors: dict[str, np.ndarray] = {}
        self._norms: dict[str, float] = {}
        self._entry_point: str | None = None

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, id: object) -> bool:
        return id in self._nodes

    @property
    def entry_point(self) -> str | None:
        return self._entry_point

    def node(self, id: str) -> IndexNode | None:
        return self._nodes.get(id)

    def ids(self) -> list[str]:
        return list(self._nodes)

    def clear(self) -> None:
        self._nodes.clear()
        self._vectors.clear()
        self._norms.clear()
        self._entry_point = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(
        self,
        nodes: Iterable[IndexNode],
        vectors: Mapping[str, np.ndarray],
        norms: Mapping[str, float] | None = None,
    ) -> list[str]:
        """Replace the graph with persisted *nodes* and their *vectors*.

        *norms* holds stored magnitudes; missing ones are computed.

        Nodes without a vector are dropped, as are neighbor references to
        unknown nodes. Returns the ids of vectors that have no node; the
        caller re-inserts them.
        """
        self.clear()
        for node in nodes:
            if node.id not in vectors:
                continue
            self._nodes[node.id] = node
            self._set_vector(node.id, vectors[node.id], (norms or {}).get(node.id))

        for node in self._nodes.values():
            for level in list(node.connections):
                node.connections[level] = [
                    i for i in node.connections[level] if i in self._nodes and i != node.id
                ]

        flagged = [n for n in self._nodes.values() if n.is_entry_point]
        if flagged:
            best = max(flagged, key=lambda n: (n.level, n.id))
            for n in flagged:
                n.is_entry_point = n is best
            self._entry_point = best.id

        missing = [i for i in vectors if i not in self._nodes]
        logger.debug(
            "hnsw.load.complete",
            nodes=len(self._nodes),
            missing=len(missing),
            entry_point=self._entry_point,
        )
        return missing

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def random_level(self) -> int:
        level = 0
        while level < self.max_level and self._rng.random() < 0.5:
            level += 1
        return level

    def insert(
        self,
        id: str,
        vector: Sequence[float] | np.ndarray,
        level: int | None = None,
        norm: float | None = None,
    ) -> set[str]:
        """Insert (or replace) *id*; returns ids of nodes whose rows changed."""
        changed = self.remove(id) if id in self._nodes else set()
        self._ensure_entry_point(changed)

        q = self._set_vector(id, vector, norm)
        q_norm = self._norms[id]
        if level is None:
            level = self.random_level()
        node = IndexNode(id=id, level=level, connections={lvl: [] for lvl in range(level + 1)})
        entry = self._entry_point
        self._nodes[id] = node
        changed.add(id)

        if entry is None:
            node.is_entry_point = True
            self._entry_point = id
            return changed

        top = self._nodes[entry].level
        ep = [entry]
        for lvl in range(top, level, -1):
            found = self._search_layer(q, q_norm, ep, 1, lvl)
            if found:
                ep = [found[0][1]]

        for lvl in range(min(level, top), -1, -1):
            found = [
                (d, i)
                for d, i in self._search_layer(q, q_norm, ep, self.ef_construction, lvl)
                if i != id
            ]
            neighbors = [i for _, i in found[: self._bound(lvl)]]
            node.connections[lvl] = neighbors
            for neighbor in neighbors:
                self._link(neighbor, id, lvl)
                changed.add(neighbor)
            if found:
                ep = [i for _, i in found]

        if level > top:
            self._nodes[entry].is_entry_point = False
            changed.add(entry)
            node.is_entry_point = True
            self._entry_point = id
        return changed

    def remove(self, id: str) -> set[str]:
        return self.remove_many([id])

    def remove_many(self, ids: Iterable[str]) -> set[str]:
        """Unlink and drop *ids*, repairing the neighbor lists they leave.

        Each surviving list that lost a link is refilled from the removed
        nodes' own neighbors at that level, nearest first. Returns ids of
        surviving nodes whose rows changed.
        """
        removed = {i: self._nodes.pop(i) for i in dict.fromkeys(ids) if i in self._nodes}
        if not removed:
            return set()

        changed: set[str] = set()
        for node in self._nodes.values():
            for level, links in node.connections.items():
                lost = [i for i in links if i in removed]
                if not lost:
                    continue
                kept = [i for i in links if i not in removed]
                candidates: set[str] = set()
                for gone in lost:
                    candidates.update(removed[gone].neighbors(level))
                candidates = {
                    c
                    for c in candidates
                    if c in self._nodes
                    and c != node.id
                    and c not in kept
                    and self._nodes[c].level >= level
                }
                room = self._bound(level) - len(kept)
                if room > 0 and candidates:
                    v, n = self._vectors[node.id], self._norms[node.id]
                    ranked = sorted(candidates, key=lambda c: (self._distance(v, n, c), c))
                    kept.extend(ranked[:room])
                node.connections[level] = kept
                changed.add(node.id)

        for gone in removed:
            self._vectors.pop(gone, None)
            self._norms.pop(gone, None)

        if self._entry_point in removed:
            self._entry_point = None
        self._ensure_entry_point(changed)
        return changed

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        query: Sequence[float] | np.ndarray,
        k: int,
        ef: int | None = None,
    ) -> list[tuple[str, float]]:
        """Approximate *k* nearest ids as ``(id, cosine_distance)``, nearest first.

        Items tied with the k-th (within ``TIE_EPSILON``) are kept as well, so
        callers can break ties on something other than id.
        """
        if not self._nodes or k <= 0:
            return []
        q = to_array(query)
        q_norm = magnitude(q)

        if self._entry_point is not None:
            entries = [self._entry_point]
        else:
            pool = sorted(self._nodes)
            entries = self._rng.sample(pool, min(len(pool), self.m))

        top = max(self._nodes[e].level for e in entries)
        ep = entries
        for lvl in range(top, 0, -1):
            found = self._search_layer(q, q_norm, ep, 1, lvl)
            if found:
                ep = [found[0][1]]

        width = max(k, ef if ef is not None else self.ef_search)
        found = self._search_layer(q, q_norm, ep, width, 0)
        if not found:
            return []
        cut = min(k, len(found))
        boundary = found[cut - 1][0]
        while cut < len(found) and found[cut][0] - boundary <= TIE_EPSILON:
            cut += 1
        return [(i, d) for d, i in found[:cut]]

    def similarities(
        self,
        query: Sequence[float] | np.ndarray,
        ids: Iterable[str],
    ) -> dict[str, float]:
        """Exact cosine similarity of *query* to each known id (cached norms)."""
        q = to_array(query)
        q_norm = magnitude(q)
        return {
            i: cosine_similarity(q, self._vectors[i], q_norm, self._norms[i])
            for i in ids
            if i in self._nodes
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _bound(self, level: int) -> int:
        return self.m0 if level == 0 else self.m

    def _set_vector(
        self,
        id: str,
        vector: Sequence[float] | np.ndarray,
        norm: float | None = None,
    ) -> np.ndarray:
        v = to_array(vector)
        self._vectors[id] = v
        self._norms[id] = magnitude(v) if norm is None else float(norm)
        return v

    def _distance(self, q: np.ndarray, q_norm: float, id: str) -> float:
        return cosine_distance(q, self._vectors[id], q_norm, self._norms[id])

    def _ensure_entry_point(self, changed: set[str]) -> None:
        if self._entry_point is not None or not self._nodes:
            return
        best = max(self._nodes.values(), key=lambda n: (n.level, n.id))
        best.is_entry_point = True
        self._entry_point = best.id
        changed.add(best.id)

    def _link(self, owner_id: str, new_id: str, level: int) -> None:
        owner = self._nodes[owner_id]
        links = owner.connections.setdefault(level, [])
        if new_id not in links:
            links.append(new_id)
        bound = self._bound(level)
        if len(links) > bound:
            v, n = self._vectors[owner_id], self._norms[owner_id]
            links.sort(key=lambda i: (self._distance(v, n, i), i))
            del links[bound:]

    def _search_layer(
        self,
        q: np.ndarray,
        q_norm: float,
        entries: Sequence[str],
        ef: int,
        level: int,
    ) -> list[tuple[float, str]]:
        """Best-first beam search on one level; ``(distance, id)`` nearest first."""
        visited: set[str] = set()
        candidates: list[tuple[float, str]] = []
        results: list[tuple[float, str]] = []  # max-heap on distance via negation

        for e in entries:
            if e in visited or e not in self._nodes:
                continue
            visited.add(e)
            d = self._distance(q, q_norm, e)
            heapq.heappush(candidates, (d, e))
            heapq.heappush(results, (-d, e))
            if len(results) > ef:
                heapq.heappop(results)

        while candidates:
            d, current = heapq.heappop(candidates)
            if results and d > -results[0][0]:
                break
            for neighbor in self._nodes[current].neighbors(level):
                if neighbor in visited or neighbor not in self._nodes:
                    continue
                visited.add(neighbor)
                dn = self._distance(q, q_norm, neighbor)
                if len(results) < ef or dn < -results[0][0]:
                    heapq.heappush(candidates, (dn, neighbor))
                    heapq.heappush(results, (-dn, neighbor))
                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted((-nd, i) for nd, i in results)
