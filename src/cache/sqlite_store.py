# src/cache/sqlite_store.py — v2
"""SQLite-based cache store (CACHE_BACKEND=sqlite).

Uses stdlib sqlite3 — no external dependency.
Better performance than JSON once the cache holds many entries.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from shipline.cache.base_cache_store import BaseCacheStore
from shipline.core.models import CacheEntry

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    last_accessed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_last_accessed ON cache_entries(last_accessed_at);
"""


class SqliteCacheStore(BaseCacheStore):
    """SQLite-backed cache store for better performance at scale."""

    def __init__(self, db_path: Path | str, capacity: int | None = None) -> None:
        super().__init__(capacity=capacity)
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def _read(self, key: str) -> CacheEntry | None:
        cursor = self._conn.execute(
            "SELECT data FROM cache_entries WHERE key = ?", (key,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        try:
            return CacheEntry.model_validate_json(row[0])
        except ValueError as e:
            logger.warning("Failed to deserialize cache entry %s: %s", key, e)
            return None

    async def _write(self, entry: CacheEntry) -> None:
        self._conn.execute(
            """INSERT OR REPLACE INTO cache_entries (key, data, last_accessed_at)
               VALUES (?, ?, ?)""",
            (entry.key, entry.model_dump_json(), entry.last_accessed_at.isoformat()),
        )
        self._conn.commit()

    async def _touch(self, entry: CacheEntry) -> None:
        await self._write(entry)

    async def delete(self, key: str) -> None:
        """Remove a cache entry."""
        self._conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        self._conn.commit()

    async def list_keys(self) -> list[str]:
        """Keys ordered by last access, oldest first."""
        cursor = self._conn.execute(
            "SELECT key FROM cache_entries ORDER BY last_accessed_at, rowid"
        )
        return [row[0] for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
