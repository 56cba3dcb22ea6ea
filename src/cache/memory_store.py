# src/cache/memory_store.py — v1
"""In-process cache store (CACHE_BACKEND=memory).

Keeps entries in an OrderedDict whose order is the LRU order. Used for
single-process runs and as the isolated per-test store.
"""

from __future__ import annotations

from collections import OrderedDict

from shipline.cache.base_cache_store import BaseCacheStore
from shipline.core.models import CacheEntry


class MemoryCacheStore(BaseCacheStore):
    """Dictionary-backed cache store with LRU ordering."""

    def __init__(self, capacity: int | None = None) -> None:
        super().__init__(capacity=capacity)
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    async def _read(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        return entry.model_copy(deep=True) if entry is not None else None

    async def _write(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry.model_copy(deep=True)
        self._entries.move_to_end(entry.key)

    async def _touch(self, entry: CacheEntry) -> None:
        if entry.key in self._entries:
            self._entries[entry.key] = entry.model_copy(deep=True)
            self._entries.move_to_end(entry.key)

    async def delete(self, key: str) -> None:
        """Remove a cache entry."""
        self._entries.pop(key, None)

    async def list_keys(self) -> list[str]:
        """Keys in LRU order."""
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)
