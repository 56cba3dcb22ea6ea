# tests/unit/cache/test_unit_persistent_stores.py — v1
"""Tests for cache/json_store.py, sqlite_store.py and redis_store.py."""

from __future__ import annotations

import sys

import pytest

from shipline.cache.json_store import JsonCacheStore
from shipline.cache.redis_store import RedisCacheStore
from shipline.cache.sqlite_store import SqliteCacheStore
from shipline.core.errors import FingerprintCollision
from shipline.core.models import Artifact


def _artifact(digest: str = "d1") -> Artifact:
    return Artifact(kind="test_report", reference=f"api/unit@{digest}", digest=digest)


class FakeRedis:
    """Just enough of redis.Redis for the cache store."""

    def __init__(self):
        self.values: dict[str, str] = {}
        self.scores: dict[str, float] = {}

    def get(self, key):
        return self.values.get(key)

    def set(self, key, value):
        self.values[key] = value

    def delete(self, key):
        self.values.pop(key, None)

    def zadd(self, name, mapping):
        self.scores.update(mapping)

    def zrem(self, name, member):
        self.scores.pop(member, None)

    def zrange(self, name, start, end):
        return [k for k, _ in sorted(self.scores.items(), key=lambda kv: kv[1])]


@pytest.fixture(params=["json", "sqlite", "redis"])
def store(request, tmp_path):
    if request.param == "json":
        yield JsonCacheStore(cache_root=tmp_path / "cache")
    elif request.param == "sqlite":
        s = SqliteCacheStore(db_path=tmp_path / "cache.db")
        yield s
        s.close()
    else:
        yield RedisCacheStore(client=FakeRedis())


class TestPersistentStores:
    @pytest.mark.asyncio
    async def test_put_and_get(self, store):
        await store.put("api:test:1", _artifact())
        result = await store.get("api:test:1")
        assert result is not None
        assert result.digest == "d1"

    @pytest.mark.asyncio
    async def test_miss(self, store):
        assert await store.get("nope") is None

    @pytest.mark.asyncio
    async def test_collision(self, store):
        await store.put("k", _artifact("a"))
        with pytest.raises(FingerprintCollision):
            await store.put("k", _artifact("b"))

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.put("k", _artifact())
        await store.delete("k")
        assert await store.get("k") is None
        assert await store.list_keys() == []

    @pytest.mark.asyncio
    async def test_invalidate_prefix(self, store):
        await store.put("api:test:1", _artifact("a"))
        await store.put("web:test:1", _artifact("b"))
        assert await store.invalidate("api:") == 1
        assert await store.list_keys() == ["web:test:1"]

    @pytest.mark.asyncio
    async def test_entries_roundtrip_hits(self, store):
        await store.put("k", _artifact())
        await store.get("k")
        (entry,) = await store.entries()
        assert entry.key == "k"
        assert entry.hits == 1


class TestJsonStoreFiles:
    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        root = tmp_path / "cache"
        await JsonCacheStore(cache_root=root).put("api:build:1", _artifact())
        reopened = JsonCacheStore(cache_root=root)
        assert (await reopened.get("api:build:1")).digest == "d1"

    @pytest.mark.asyncio
    async def test_corrupt_file_is_miss(self, tmp_path):
        store = JsonCacheStore(cache_root=tmp_path)
        await store.put("k", _artifact())
        for path in tmp_path.glob("*.json"):
            path.write_text("{not json")
        assert await store.get("k") is None


class TestRedisImport:
    def test_import_error_without_redis(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "redis", None)
        with pytest.raises(ImportError, match="redis"):
            RedisCacheStore(redis_url="redis://localhost")
