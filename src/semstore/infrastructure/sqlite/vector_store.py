"""Vector store backed by ``vectors.db``.

Tables:
- ``vectors``: id, dimension, float32 embedding blob, cached magnitude.
- ``hnsw_index``: one row per graph node; ``connections`` is a JSON object
  mapping level to neighbor ids.
- ``store_meta``: key/value pairs (the fixed embedding dimension).
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from pathlib import Path

import numpy as np
import structlog

from semstore.domain.entities import IndexNode, VectorRecord
from semstore.infrastructure.sqlite.database import SQLiteDatabase, chunked, placeholders
from semstore.infrastructure.vector.similarity import decode_embedding, encode_embedding

logger = structlog.get_logger(__name__)

VECTOR_SCHEMA = """
CREATE TABLE IF NOT EXISTS vectors (
    id TEXT PRIMARY KEY,
    dimension INTEGER NOT NULL,
    embedding BLOB NOT NULL,
    magnitude REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS hnsw_index (
    node_id TEXT PRIMARY KEY,
    level INTEGER NOT NULL,
    connections TEXT NOT NULL DEFAULT '{}',
    entry_point INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_hnsw_level ON hnsw_index(level);
CREATE INDEX IF NOT EXISTS idx_hnsw_entry ON hnsw_index(entry_point);

CREATE TABLE IF NOT EXISTS store_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

DIMENSION_KEY = "dimension"


class SQLiteVectorStore:
    """Durable id -> embedding mapping plus the persisted graph nodes."""

    def __init__(self, path: str | Path) -> None:
        self.db = SQLiteDatabase(path, VECTOR_SCHEMA, name="vectors")

    async def open(self) -> None:
        await self.db.open()

    async def close(self) -> None:
        await self.db.close()

    # ------------------------------------------------------------------
    # Vectors
    # ------------------------------------------------------------------

    async def upsert_vector(self, record: VectorRecord) -> None:
        await self.db.execute(
            "INSERT OR REPLACE INTO vectors (id, dimension, embedding, magnitude) "
            "VALUES (?, ?, ?, ?)",
            (record.id, record.dimension, encode_embedding(record.embedding), record.magnitude),
        )

    async def get_vector(self, id: str) -> VectorRecord | None:
        row = await self.db.fetchone(
            "SELECT id, dimension, embedding, magnitude FROM vectors WHERE id = ?", (id,)
        )
        if row is None:
            return None
        return VectorRecord(
            id=row["id"],
            dimension=row["dimension"],
            embedding=decode_embedding(row["embedding"]).tolist(),
            magnitude=row["magnitude"],
        )

    async def load_vectors(self) -> tuple[dict[str, np.ndarray], dict[str, float]]:
        """Return every embedding and its stored magnitude, keyed by id."""
        rows = await self.db.fetchall("SELECT id, embedding, magnitude FROM vectors")
        vectors = {row["id"]: decode_embedding(row["embedding"]) for row in rows}
        norms = {row["id"]: float(row["magnitude"]) for row in rows}
        return vectors, norms

    async def delete_vectors(self, ids: Sequence[str]) -> int:
        deleted = 0
        for batch in chunked(list(ids)):
            deleted += await self.db.execute(
                f"DELETE FROM vectors WHERE id IN ({placeholders(len(batch))})", batch
            )
        return deleted

    async def vector_ids(self) -> set[str]:
        rows = await self.db.fetchall("SELECT id FROM vectors")
        return {row["id"] for row in rows}

    async def count_vectors(self) -> int:
        return int(await self.db.scalar("SELECT COUNT(*) FROM vectors"))

    # ------------------------------------------------------------------
    # Graph nodes
    # ------------------------------------------------------------------

    async def upsert_nodes(self, nodes: Iterable[IndexNode]) -> None:
        rows = [
            (
                node.id,
                node.level,
                json.dumps({str(level): ids for level, ids in sorted(node.connections.items())}),
                int(node.is_entry_point),
            )
            for node in nodes
        ]
        if rows:
            await self.db.executemany(
                "INSERT OR REPLACE INTO hnsw_index (node_id, level, connections, entry_point) "
                "VALUES (?, ?, ?, ?)",
                rows,
            )

    async def load_nodes(self) -> list[IndexNode]:
        rows = await self.db.fetchall(
            "SELECT node_id, level, connections, entry_point FROM hnsw_index"
        )
        return [
            IndexNode(
                id=row["node_id"],
                level=row["level"],
                connections={int(k): list(v) for k, v in json.loads(row["connections"]).items()},
                is_entry_point=bool(row["entry_point"]),
            )
            for row in rows
        ]

    async def delete_nodes(self, ids: Sequence[str]) -> int:
        deleted = 0
        for batch in chunked(list(ids)):
            deleted += await self.db.execute(
                f"DELETE FROM hnsw_index WHERE node_id IN ({placeholders(len(batch))})", batch
            )
        return deleted

    async def node_ids(self) -> set[str]:
        rows = await self.db.fetchall("SELECT node_id FROM hnsw_index")
        return {row["node_id"] for row in rows}

    async def count_nodes(self) -> int:
        return int(await self.db.scalar("SELECT COUNT(*) FROM hnsw_index"))

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def get_dimension(self) -> int | None:
        value = await self.db.scalar("SELECT value FROM store_meta WHERE key = ?", (DIMENSION_KEY,))
        return None if value is None else int(value)

    async def set_dimension(self, dimension: int) -> None:
        await self.db.execute(
            "INSERT OR REPLACE INTO store_meta (key, value) VALUES (?, ?)",
            (DIMENSION_KEY, str(dimension)),
        )
