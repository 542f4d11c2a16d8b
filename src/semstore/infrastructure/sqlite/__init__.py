"""SQLite persistence (aiosqlite)."""

from semstore.infrastructure.sqlite.content_store import SQLiteContentStore
from semstore.infrastructure.sqlite.database import SQLiteDatabase
from semstore.infrastructure.sqlite.locks import ReadWriteLock
from semstore.infrastructure.sqlite.vector_store import SQLiteVectorStore

__all__ = ["ReadWriteLock", "SQLiteContentStore", "SQLiteDatabase", "SQLiteVectorStore"]
