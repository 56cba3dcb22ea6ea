# src/cache/base_cache_store.py — v2
"""Abstract cache store interface.

Backends implement raw storage. This base class owns the parts every backend
shares: run leases, which pin entries against LRU eviction while a run that
read or wrote them is still in flight, and collision detection on ``put``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import datetime, timezone

from shipline.core.errors import FingerprintCollision
from shipline.core.models import Artifact, CacheEntry

logger = logging.getLogger(__name__)


class BaseCacheStore(ABC):
    """Unified interface for cache storage backends.

    Args:
        capacity: Maximum number of entries kept; None means unbounded.
    """

    def __init__(self, capacity: int | None = None) -> None:
        if capacity is not None and capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._leases: dict[str, set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int | None:
        return self._capacity

    # --- Backend primitives ---

    @abstractmethod
    async def _read(self, key: str) -> CacheEntry | None:
        """Load an entry without touching recency."""

    @abstractmethod
    async def _write(self, entry: CacheEntry) -> None:
        """Insert or replace an entry."""

    @abstractmethod
    async def _touch(self, entry: CacheEntry) -> None:
        """Persist updated recency / hit count for an existing entry."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove cache entry."""

    @abstractmethod
    async def list_keys(self) -> list[str]:
        """All keys, least recently used first."""

    # --- Public contract ---

    async def get(self, key: str) -> Artifact | None:
        """Return the artifact stored under key, or None on a miss."""
        async with self._lock:
            entry = await self._read(key)
            if entry is None:
                return None
            entry.last_accessed_at = _now()
            entry.hits += 1
            await self._touch(entry)
            return entry.artifact

    async def put(self, key: str, artifact: Artifact) -> None:
        """Store an artifact under key.

        Writing an identical artifact to an existing key only refreshes it.

        Raises:
            FingerprintCollision: If key already holds a different artifact.
        """
        async with self._lock:
            existing = await self._read(key)
            if existing is not None:
                if existing.artifact.digest != artifact.digest:
                    raise FingerprintCollision(
                        key, existing.artifact.digest, artifact.digest
                    )
                existing.last_accessed_at = _now()
                await self._touch(existing)
                return

            now = _now()
            await self._write(
                CacheEntry(key=key, artifact=artifact, created_at=now, last_accessed_at=now)
            )
            await self._evict()

    async def invalidate(self, prefix: str) -> int:
        """Delete every entry whose key starts with prefix. Returns the count."""
        removed = 0
        async with self._lock:
            for key in await self.list_keys():
                if key.startswith(prefix):
                    await self.delete(key)
                    removed += 1
        if removed:
            logger.info("Invalidated %d cache entries with prefix '%s'", removed, prefix)
        return removed

    async def entries(self) -> list[CacheEntry]:
        """All entries, least recently used first."""
        found: list[CacheEntry] = []
        for key in await self.list_keys():
            entry = await self._read(key)
            if entry is not None:
                found.append(entry)
        return found

    # --- Leases ---

    def acquire_lease(self, run_id: str, key: str) -> None:
        """Pin key against eviction until run_id releases its leases."""
        self._leases[run_id].add(key)

    def release_leases(self, run_id: str) -> None:
        self._leases.pop(run_id, None)

    def is_leased(self, key: str) -> bool:
        return any(key in keys for keys in self._leases.values())

    async def _evict(self) -> None:
        """Drop least recently used, unleased entries down to capacity."""
        if self._capacity is None:
            return
        keys = await self.list_keys()
        overflow = len(keys) - self._capacity
        if overflow <= 0:
            return
        for key in keys:
            if overflow <= 0:
                break
            if self.is_leased(key):
                continue
            await self.delete(key)
            overflow -= 1
            logger.debug("Evicted cache entry %s", key)
        if overflow > 0:
            logger.debug(
                "Cache over capacity by %d: remaining entries are leased", overflow
            )


def _now() -> datetime:
    return datetime.now(timezone.utc)
