# src/cache/cache_factory.py — v2
"""Factory for cache store instantiation."""

from __future__ import annotations

from shipline.cache.base_cache_store import BaseCacheStore
from shipline.config.settings import Settings


def create_cache_store(settings: Settings | None = None) -> BaseCacheStore:
    """Instantiate the configured cache backend.

    Args:
        settings: Application settings. Defaults to the in-memory backend.

    Returns:
        Configured BaseCacheStore implementation.
    """
    backend = "memory" if settings is None else settings.cache_backend
    capacity = None if settings is None else settings.cache_capacity

    if backend == "memory":
        from shipline.cache.memory_store import MemoryCacheStore
        return MemoryCacheStore(capacity=capacity)

    if backend == "json":
        from shipline.cache.json_store import JsonCacheStore
        return JsonCacheStore(cache_root=settings.cache_root, capacity=capacity)

    if backend == "sqlite":
        from shipline.cache.sqlite_store import SqliteCacheStore
        db_path = settings.cache_root.expanduser() / "shipline_cache.db"
        return SqliteCacheStore(db_path=db_path, capacity=capacity)

    if backend == "redis":
        from shipline.cache.redis_store import RedisCacheStore
        if not settings.cache_redis_url:
            raise ValueError(
                "CACHE_REDIS_URL must be set when CACHE_BACKEND=redis"
            )
        return RedisCacheStore(redis_url=settings.cache_redis_url, capacity=capacity)

    raise ValueError(f"Unsupported cache backend: {backend!r}")
