# src/cache/json_store.py — v2
"""JSON file-based cache store (CACHE_BACKEND=json).

Stores cache entries as individual JSON files under CACHE_ROOT. LRU order is
derived from each entry's ``last_accessed_at``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from pathlib import Path

from shipline.cache.base_cache_store import BaseCacheStore
from shipline.core.models import CacheEntry

logger = logging.getLogger(__name__)


class JsonCacheStore(BaseCacheStore):
    """File-based cache store using JSON files."""

    def __init__(self, cache_root: Path | str, capacity: int | None = None) -> None:
        super().__init__(capacity=capacity)
        self._root = Path(cache_root).expanduser()
        self._root.mkdir(parents=True, exist_ok=True)

    async def _read(self, key: str) -> CacheEntry | None:
        path = self._entry_path(key)
        if not path.exists():
            return None
        try:
            return CacheEntry.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Failed to read cache entry %s: %s", key, e)
            return None

    async def _write(self, entry: CacheEntry) -> None:
        path = self._entry_path(entry.key)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(entry.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp, path)

    async def _touch(self, entry: CacheEntry) -> None:
        await self._write(entry)

    async def delete(self, key: str) -> None:
        """Remove a cache entry."""
        path = self._entry_path(key)
        if path.exists():
            path.unlink()

    async def list_keys(self) -> list[str]:
        """Keys ordered by last access, oldest first."""
        entries: list[tuple[str, str]] = []
        for path in self._root.glob("*.json"):
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                entries.append((data["last_accessed_at"], data["key"]))
            except (OSError, ValueError, KeyError):
                continue
        return [key for _, key in sorted(entries)]

    def _entry_path(self, key: str) -> Path:
        """Return file path for a cache key."""
        safe_key = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self._root / f"{safe_key}.json"
