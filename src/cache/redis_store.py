# src/cache/redis_store.py — v2
"""Redis-based cache store (CACHE_BACKEND=redis).

Requires 'redis' package: pip install shipline[redis].
Suitable for sharing one cache between several CI runners. LRU order lives
in a sorted set scored by last access time.
"""

from __future__ import annotations

import logging

from shipline.cache.base_cache_store import BaseCacheStore
from shipline.core.models import CacheEntry

logger = logging.getLogger(__name__)

_KEY_PREFIX = "shipline:cache:"
_RECENCY_KEY = "shipline:cache:__recency__"


class RedisCacheStore(BaseCacheStore):
    """Redis-backed cache store for distributed runners."""

    def __init__(
        self, redis_url: str = "", capacity: int | None = None, client=None
    ) -> None:
        super().__init__(capacity=capacity)
        if client is None:
            try:
                import redis
            except ImportError as e:
                raise ImportError(
                    "redis package required: pip install shipline[redis]"
                ) from e
            client = redis.Redis.from_url(redis_url, decode_responses=True)
        self._client = client

    async def _read(self, key: str) -> CacheEntry | None:
        data = self._client.get(f"{_KEY_PREFIX}{key}")
        if data is None:
            return None
        try:
            return CacheEntry.model_validate_json(data)
        except ValueError as e:
            logger.warning("Failed to deserialize cache entry %s: %s", key, e)
            return None

    async def _write(self, entry: CacheEntry) -> None:
        self._client.set(f"{_KEY_PREFIX}{entry.key}", entry.model_dump_json())
        self._client.zadd(_RECENCY_KEY, {entry.key: entry.last_accessed_at.timestamp()})

    async def _touch(self, entry: CacheEntry) -> None:
        await self._write(entry)

    async def delete(self, key: str) -> None:
        """Remove a cache entry."""
        self._client.delete(f"{_KEY_PREFIX}{key}")
        self._client.zrem(_RECENCY_KEY, key)

    async def list_keys(self) -> list[str]:
        """Keys ordered by last access, oldest first."""
        return list(self._client.zrange(_RECENCY_KEY, 0, -1))
