from __future__ import annotations

import fakeredis.aioredis as fakeredis
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from toolforge.config import Settings
from toolforge.storage import RedisCache


class UnreachableRedis:
    """Stands in for a Redis client whose server is down."""

    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def set(self, key, value):
        raise RedisConnectionError("connection refused")

    async def setex(self, key, ttl, value):
        raise RedisConnectionError("connection refused")

    async def aclose(self):
        return None


@pytest.mark.asyncio
async def test_json_values_round_trip_with_ttl() -> None:
    redis = fakeredis.FakeRedis()
    cache = RedisCache(redis, Settings())
    key = RedisCache.rank_key("abc123")
    try:
        await cache.set_json(key, [{"id": 1, "title": "Café"}], ttl_seconds=60)
        assert await cache.get_json(key) == [{"id": 1, "title": "Café"}]
        assert 0 < await redis.ttl(key) <= 60
    finally:
        await cache.close()


@pytest.mark.asyncio
async def test_non_positive_ttl_stores_without_expiry() -> None:
    redis = fakeredis.FakeRedis()
    cache = RedisCache(redis, Settings())
    key = RedisCache.expansion_key("q")
    try:
        await cache.set_json(key, {"expanded_query": "x"}, ttl_seconds=0)
        assert await redis.ttl(key) == -1
    finally:
        await cache.close()


@pytest.mark.asyncio
async def test_missing_and_undecodable_entries_are_misses() -> None:
    redis = fakeredis.FakeRedis()
    cache = RedisCache(redis, Settings())
    try:
        assert await cache.get_json("tf:rank:missing") is None
        await redis.set("tf:rank:garbage", b"{not json")
        assert await cache.get_json("tf:rank:garbage") is None
    finally:
        await cache.close()


@pytest.mark.asyncio
async def test_unreachable_store_degrades_to_miss() -> None:
    cache = RedisCache(UnreachableRedis(), Settings())  # type: ignore[arg-type]
    await cache.set_json("tf:rank:k", [1, 2], ttl_seconds=30)
    assert await cache.get_json("tf:rank:k") is None


def test_keys_are_namespaced() -> None:
    assert RedisCache.rank_key("d") == "tf:rank:d"
    assert RedisCache.expansion_key("d") == "tf:qx:d"
