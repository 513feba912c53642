"""
Tests for the in-process cache backend and the cache manager fallback.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from riskgate.errors import DependencyUnavailable
from riskgate.storage.cache import CacheManager, MemoryCache, RedisCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.mark.asyncio
async def test_get_set(cache: MemoryCache):
    assert await cache.get("k") is None
    await cache.set("k", "v")
    assert await cache.get("k") == "v"
    assert await cache.exists("k")
    assert await cache.delete("k") == 1
    assert await cache.delete("k") == 0


@pytest.mark.asyncio
async def test_ttl_expiry(cache: MemoryCache, clock: FakeClock):
    await cache.set("k", "v", ttl=10)
    clock.now += 9.9
    assert await cache.get("k") == "v"
    clock.now += 0.1
    assert await cache.get("k") is None


@pytest.mark.asyncio
async def test_incr_keeps_first_ttl(cache: MemoryCache, clock: FakeClock):
    """The window starts at the first increment; later ones don't extend it."""
    assert await cache.incr("c", ttl=60) == 1
    clock.now += 30
    assert await cache.incr("c", ttl=60) == 2
    clock.now += 30
    assert await cache.incr("c", ttl=60) == 1


@pytest.mark.asyncio
async def test_expire(cache: MemoryCache, clock: FakeClock):
    assert not await cache.expire("missing", 5)
    await cache.set("k", "v")
    assert await cache.expire("k", 5)
    clock.now += 5
    assert not await cache.exists("k")


@pytest.mark.asyncio
async def test_purge_expired(cache: MemoryCache, clock: FakeClock):
    await cache.set("a", "1", ttl=1)
    await cache.set("b", "1")
    clock.now += 2
    assert cache.purge_expired() == 1
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_manager_without_redis_uses_memory():
    manager = CacheManager(None)
    cache = await manager.connect()
    assert cache.name == "memory"
    assert await manager.health_check()
    await manager.disconnect()


@pytest.mark.asyncio
async def test_manager_falls_back_when_redis_unreachable():
    manager = CacheManager("redis://127.0.0.1:1/0")
    cache = await manager.connect()
    assert cache.name == "memory"
    await manager.disconnect()


@pytest.mark.asyncio
async def test_redis_errors_surface_as_dependency_unavailable():
    client = MagicMock()
    client.get = AsyncMock(side_effect=RedisConnectionError("down"))
    client.ping = AsyncMock(side_effect=RedisConnectionError("down"))
    cache = RedisCache(client)
    with pytest.raises(DependencyUnavailable):
        await cache.get("k")
    assert not await cache.ping()


@pytest.mark.asyncio
async def test_redis_incr_sets_ttl_only_on_create_and_closes():
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[1, True])
    client = MagicMock()
    client.pipeline.return_value = pipe
    client.aclose = AsyncMock()
    cache = RedisCache(client)

    assert await cache.incr("rl:ip:1.2.3.4:0", ttl=60) == 1
    client.pipeline.assert_called_once_with(transaction=True)
    pipe.expire.assert_called_once_with("rl:ip:1.2.3.4:0", 60, nx=True)

    await cache.close()
    client.aclose.assert_awaited_once()
