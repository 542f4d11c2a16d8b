"""Content store backed by ``content.db``.

Tables:
- ``content``: one row per record; ``source_key`` is the grouping key,
  ``source_json`` the full tagged source, times are epoch seconds (UTC).
- ``content_tags``: (content_id, tag) pairs, indexed on tag.

The store never opens transactions itself; the engine wraps writes in
``database.transaction()`` so that several writes commit together.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from semstore.domain.entities import SOURCE_ADAPTER, AccessEntry, ContentRecord
from semstore.domain.enums import ContentTag
from semstore.infrastructure.sqlite.database import SQLiteDatabase, chunked, placeholders

logger = structlog.get_logger(__name__)

CONTENT_SCHEMA = """
CREATE TABLE IF NOT EXISTS content (
    id TEXT PRIMARY KEY,
    text TEXT NOT NULL,
    source_key TEXT NOT NULL,
    source_json TEXT NOT NULL,
    metadata TEXT NOT NULL DEFAULT '{}',
    timestamp REAL NOT NULL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 0,
    last_accessed REAL,
    user_created INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_content_timestamp ON content(timestamp);
CREATE INDEX IF NOT EXISTS idx_content_source ON content(source_key);
CREATE INDEX IF NOT EXISTS idx_content_access ON content(access_count, timestamp);

CREATE TABLE IF NOT EXISTS content_tags (
    content_id TEXT NOT NULL,
    tag TEXT NOT NULL,
    PRIMARY KEY (content_id, tag)
);
CREATE INDEX IF NOT EXISTS idx_content_tags_tag ON content_tags(tag);
"""

_COLUMNS = (
    "id, text, source_key, source_json, metadata, timestamp, created_at, "
    "updated_at, access_count, last_accessed, user_created"
)


def to_epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def from_epoch(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteContentStore:
    """Durable id -> ContentRecord mapping."""

    def __init__(self, path: str | Path) -> None:
        self.db = SQLiteDatabase(path, CONTENT_SCHEMA, name="content")

    async def open(self) -> None:
        await self.db.open()

    async def close(self) -> None:
        await self.db.close()

    # ------------------------------------------------------------------
    # Writes (caller owns the transaction)
    # ------------------------------------------------------------------

    async def upsert(self, record: ContentRecord) -> None:
        await self.db.execute(
            f"INSERT OR REPLACE INTO content ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.id,
                record.text,
                record.source.key,
                record.source.model_dump_json(),
                json.dumps(record.metadata),
                to_epoch(record.timestamp),
                to_epoch(record.created_at),
                to_epoch(record.updated_at),
                record.access_count,
                to_epoch(record.last_accessed) if record.last_accessed else None,
                int(record.user_created),
            ),
        )
        await self.db.execute("DELETE FROM content_tags WHERE content_id = ?", (record.id,))
        if record.tags:
            await self.db.executemany(
                "INSERT INTO content_tags (content_id, tag) VALUES (?, ?)",
                [(record.id, tag.value) for tag in sorted(record.tags, key=lambda t: t.value)],
            )

    async def delete(self, ids: Sequence[str]) -> int:
        deleted = 0
        for batch in chunked(list(ids)):
            marks = placeholders(len(batch))
            await self.db.execute(f"DELETE FROM content_tags WHERE content_id IN ({marks})", batch)
            deleted += await self.db.execute(f"DELETE FROM content WHERE id IN ({marks})", batch)
        return deleted

    async def bump_access(self, ids: Iterable[str], when: datetime) -> None:
        unique = sorted(set(ids))
        if not unique:
            return
        epoch = to_epoch(when)
        for batch in chunked(unique):
            await self.db.execute(
                "UPDATE content SET access_count = access_count + 1, last_accessed = ? "
                f"WHERE id IN ({placeholders(len(batch))})",
                (epoch, *batch),
            )

    # ------------------------------------------------------------------
    # Point reads
    # ------------------------------------------------------------------

    async def get(self, id: str) -> ContentRecord | None:
        rows = await self.db.fetchall(f"SELECT {_COLUMNS} FROM content WHERE id = ?", (id,))
        records = await self._hydrate(rows)
        return records[0] if records else None

    async def get_many(self, ids: Sequence[str]) -> dict[str, ContentRecord]:
        found: dict[str, ContentRecord] = {}
        for batch in chunked(list(dict.fromkeys(ids))):
            rows = await self.db.fetchall(
                f"SELECT {_COLUMNS} FROM content WHERE id IN ({placeholders(len(batch))})",
                batch,
            )
            for record in await self._hydrate(rows):
                found[record.id] = record
        return found

    async def all_ids(self) -> set[str]:
        rows = await self.db.fetchall("SELECT id FROM content")
        return {row["id"] for row in rows}

    async def count(self) -> int:
        return int(await self.db.scalar("SELECT COUNT(*) FROM content"))

    # ------------------------------------------------------------------
    # Filtered scans, newest first
    # ------------------------------------------------------------------

    async def by_tag(self, tag: ContentTag, limit: int) -> list[ContentRecord]:
        rows = await self.db.fetchall(
            f"SELECT {_prefixed('c')} FROM content c "
            "JOIN content_tags t ON t.content_id = c.id "
            "WHERE t.tag = ? ORDER BY c.timestamp DESC, c.id LIMIT ?",
            (tag.value, limit),
        )
        return await self._hydrate(rows)

    async def by_source(self, key: str, limit: int) -> list[ContentRecord]:
        rows = await self.db.fetchall(
            f"SELECT {_COLUMNS} FROM content WHERE source_key = ? "
            "ORDER BY timestamp DESC, id LIMIT ?",
            (key, limit),
        )
        return await self._hydrate(rows)

    async def by_time_range(self, start: datetime, end: datetime, limit: int) -> list[ContentRecord]:
        rows = await self.db.fetchall(
            f"SELECT {_COLUMNS} FROM content WHERE timestamp >= ? AND timestamp <= ? "
            "ORDER BY timestamp DESC, id LIMIT ?",
            (to_epoch(start), to_epoch(end), limit),
        )
        return await self._hydrate(rows)

    async def recent(self, limit: int) -> list[ContentRecord]:
        rows = await self.db.fetchall(
            f"SELECT {_COLUMNS} FROM content ORDER BY timestamp DESC, id LIMIT ?", (limit,)
        )
        return await self._hydrate(rows)

    async def keyword(self, query: str, limit: int) -> list[ContentRecord]:
        """Case-insensitive substring match (ASCII case folding), newest first."""
        rows = await self.db.fetchall(
            f"SELECT {_COLUMNS} FROM content WHERE text LIKE ? ESCAPE '\\' "
            "ORDER BY timestamp DESC, id LIMIT ?",
            (f"%{_escape_like(query)}%", limit),
        )
        return await self._hydrate(rows)

    async def filtered(
        self,
        tags: Iterable[ContentTag] | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int | None = None,
    ) -> list[ContentRecord]:
        """Records carrying any of *tags* within [since, until], newest first."""
        sql, params = _filter_clause(tags, since, until)
        sql = f"SELECT {_COLUMNS} FROM content{sql} ORDER BY timestamp DESC, id"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return await self._hydrate(await self.db.fetchall(sql, params))

    async def filtered_ids(
        self,
        tags: Iterable[ContentTag] | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[str]:
        sql, params = _filter_clause(tags, since, until)
        rows = await self.db.fetchall(f"SELECT id FROM content{sql}", params)
        return [row["id"] for row in rows]

    # ------------------------------------------------------------------
    # Maintenance queries
    # ------------------------------------------------------------------

    async def eviction_candidates(self, count: int) -> list[str]:
        """Least accessed first, then oldest, then by id."""
        rows = await self.db.fetchall(
            "SELECT id FROM content ORDER BY access_count ASC, timestamp ASC, id ASC LIMIT ?",
            (count,),
        )
        return [row["id"] for row in rows]

    async def expired_ids(self, cutoff: datetime) -> list[str]:
        rows = await self.db.fetchall(
            "SELECT id FROM content WHERE timestamp < ? AND user_created = 0",
            (to_epoch(cutoff),),
        )
        return [row["id"] for row in rows]

    async def tag_counts(self) -> dict[str, int]:
        rows = await self.db.fetchall(
            "SELECT tag, COUNT(*) AS n FROM content_tags GROUP BY tag ORDER BY n DESC, tag"
        )
        return {row["tag"]: row["n"] for row in rows}

    async def source_counts(self) -> dict[str, int]:
        rows = await self.db.fetchall(
            "SELECT source_key, COUNT(*) AS n FROM content GROUP BY source_key "
            "ORDER BY n DESC, source_key"
        )
        return {row["source_key"]: row["n"] for row in rows}

    async def most_accessed(self, limit: int) -> list[AccessEntry]:
        rows = await self.db.fetchall(
            "SELECT id, text, access_count, last_accessed FROM content "
            "WHERE access_count > 0 ORDER BY access_count DESC, last_accessed DESC, id LIMIT ?",
            (limit,),
        )
        return [
            AccessEntry(
                id=row["id"],
                text=row["text"],
                access_count=row["access_count"],
                last_accessed=from_epoch(row["last_accessed"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _tags_for(self, ids: Sequence[str]) -> dict[str, set[ContentTag]]:
        tags: dict[str, set[ContentTag]] = {id: set() for id in ids}
        for batch in chunked(list(ids)):
            rows = await self.db.fetchall(
                "SELECT content_id, tag FROM content_tags "
                f"WHERE content_id IN ({placeholders(len(batch))})",
                batch,
            )
            for row in rows:
                tags[row["content_id"]].add(ContentTag(row["tag"]))
        return tags

    async def _hydrate(self, rows: list[aiosqlite.Row]) -> list[ContentRecord]:
        if not rows:
            return []
        tags = await self._tags_for([row["id"] for row in rows])
        return [_row_to_record(row, tags[row["id"]]) for row in rows]


def _prefixed(alias: str) -> str:
    return ", ".join(f"{alias}.{col.strip()}" for col in _COLUMNS.split(","))


def _filter_clause(
    tags: Iterable[ContentTag] | None,
    since: datetime | None,
    until: datetime | None,
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    tag_values = sorted({tag.value for tag in tags or ()})
    if tag_values:
        clauses.append(
            "id IN (SELECT content_id FROM content_tags "
            f"WHERE tag IN ({placeholders(len(tag_values))}))"
        )
        params.extend(tag_values)
    if since is not None:
        clauses.append("timestamp >= ?")
        params.append(to_epoch(since))
    if until is not None:
        clauses.append("timestamp <= ?")
        params.append(to_epoch(until))
    if not clauses:
        return "", params
    return " WHERE " + " AND ".join(clauses), params


def _row_to_record(row: aiosqlite.Row, tags: set[ContentTag]) -> ContentRecord:
    return ContentRecord(
        id=row["id"],
        text=row["text"],
        source=SOURCE_ADAPTER.validate_json(row["source_json"]),
        tags=tags,
        metadata=json.loads(row["metadata"]),
        timestamp=from_epoch(row["timestamp"]),
        created_at=from_epoch(row["created_at"]),
        updated_at=from_epoch(row["updated_at"]),
        access_count=row["access_count"],
        last_accessed=from_epoch(row["last_accessed"]),
        user_created=bool(row["user_created"]),
    )
