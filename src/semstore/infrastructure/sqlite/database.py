"""Thin async wrapper around one aiosqlite connection.

The connection runs in autocommit mode; writes are grouped explicitly with
``BEGIN IMMEDIATE`` / ``COMMIT`` / ``ROLLBACK`` through ``transaction()``.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Sequence
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from semstore.core.exceptions import EngineExecutionError, OpenFailedError, StoreNotOpenError

logger = structlog.get_logger(__name__)


class SQLiteDatabase:
    """One SQLite file with its schema script."""

    def __init__(self, path: str | Path, schema: str, name: str = "db") -> None:
        self.path = Path(path)
        self.name = name
        self._schema = schema
        self._conn: aiosqlite.Connection | None = None
        self._in_transaction = False

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreNotOpenError(f"{self.name} database is not open", {"path": str(self.path)})
        return self._conn

    async def open(self) -> None:
        log = logger.bind(db=self.name, path=str(self.path))
        if self._conn is not None:
            return
        log.debug("sqlite.open.start")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(str(self.path), isolation_level=None)
        except (OSError, aiosqlite.Error) as exc:
            raise OpenFailedError(
                f"Failed to open {self.name} database: {exc}", {"path": str(self.path)}
            ) from exc
        conn.row_factory = aiosqlite.Row
        try:
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.executescript(self._schema)
        except aiosqlite.Error as exc:
            await conn.close()
            raise OpenFailedError(
                f"Failed to create {self.name} schema: {exc}", {"path": str(self.path)}
            ) from exc
        self._conn = conn
        log.info("sqlite.open.complete")

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        logger.info("sqlite.close", db=self.name)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run the enclosed statements as one write transaction.

        Nested use joins the outer transaction, so batch writers can wrap
        several single-item writes in one commit.
        """
        conn = self.conn
        if self._in_transaction:
            yield conn
            return
        await conn.execute("BEGIN IMMEDIATE")
        self._in_transaction = True
        try:
            yield conn
        except BaseException:
            self._in_transaction = False
            await conn.execute("ROLLBACK")
            raise
        else:
            self._in_transaction = False
            await conn.execute("COMMIT")

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute one statement and return the affected row count."""
        try:
            cursor = await self.conn.execute(sql, params)
        except aiosqlite.Error as exc:
            raise EngineExecutionError(str(exc), {"db": self.name, "sql": sql}) from exc
        rowcount = cursor.rowcount
        await cursor.close()
        return rowcount

    async def executemany(self, sql: str, rows: Iterable[Sequence[Any]]) -> None:
        try:
            await self.conn.executemany(sql, rows)
        except aiosqlite.Error as exc:
            raise EngineExecutionError(str(exc), {"db": self.name, "sql": sql}) from exc

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        try:
            async with self.conn.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise EngineExecutionError(str(exc), {"db": self.name, "sql": sql}) from exc

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Row | None:
        try:
            async with self.conn.execute(sql, params) as cursor:
                return await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise EngineExecutionError(str(exc), {"db": self.name, "sql": sql}) from exc

    async def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = await self.fetchone(sql, params)
        return None if row is None else row[0]


def placeholders(count: int) -> str:
    """Return ``?, ?, ...`` for an ``IN (...)`` clause."""
    return ", ".join("?" for _ in range(count))


def chunked(items: Sequence[str], size: int = 500) -> Iterable[Sequence[str]]:
    """Split *items* to stay below SQLite's bound-parameter limit."""
    for start in range(0, len(items), size):
        yield items[start : start + size]
