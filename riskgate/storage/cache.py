"""
Riskgate - Cache abstraction.

Counters, temporary blocks and cached IP analyses all go through ``Cache``.
Two backends are provided: Redis (shared between workers) and an
in-process map for single-node deployments and tests. Business logic
never knows which one it is talking to.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional, Union

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from riskgate.errors import DependencyUnavailable

logger = logging.getLogger("riskgate.storage.cache")

Value = Union[str, int]


class Cache(ABC):
    """Minimal key/value contract with expiry and atomic increments."""

    name = "cache"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set(self, key: str, value: Value, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    async def incr(self, key: str, ttl: Optional[int] = None) -> int:
        """Atomically increment ``key``; ``ttl`` is applied when the key is created."""

    @abstractmethod
    async def expire(self, key: str, seconds: int) -> bool:
        ...

    @abstractmethod
    async def exists(self, key: str) -> bool:
        ...

    @abstractmethod
    async def delete(self, key: str) -> int:
        ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryCache(Cache):
    """
    In-process cache.

    Every operation runs without awaiting between read and write, so
    under a single event loop each call is atomic per key without a lock.
    Expired entries are dropped lazily on access and by a periodic sweep.
    """

    name = "memory"

    def __init__(
        self,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._data: dict[str, tuple[Value, Optional[float]]] = {}
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._sweep_task: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._data)

    # ── Contract ─────────────────────────────────────────

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        if entry is None:
            return None
        return str(entry[0])

    async def set(self, key: str, value: Value, ttl: Optional[int] = None) -> None:
        self._data[key] = (value, self._deadline(ttl))

    async def incr(self, key: str, ttl: Optional[int] = None) -> int:
        entry = self._live(key)
        if entry is None:
            count = 1
            deadline = self._deadline(ttl)
        else:
            count = int(entry[0]) + 1
            deadline = entry[1]
        self._data[key] = (count, deadline)
        return count

    async def expire(self, key: str, seconds: int) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        self._data[key] = (entry[0], self._deadline(seconds))
        return True

    async def exists(self, key: str) -> bool:
        return self._live(key) is not None

    async def delete(self, key: str) -> int:
        return 1 if self._data.pop(key, None) is not None else 0

    # ── Maintenance ──────────────────────────────────────

    def start(self) -> None:
        """Start the background sweep of expired entries."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def close(self) -> None:
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [
            key for key, (_, deadline) in self._data.items()
            if deadline is not None and deadline <= now
        ]
        for key in expired:
            del self._data[key]
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            removed = self.purge_expired()
            if removed:
                logger.debug("Evicted %d expired cache entries", removed)

    # ── Internal ─────────────────────────────────────────

    def _deadline(self, ttl: Optional[int]) -> Optional[float]:
        return self._clock() + ttl if ttl else None

    def _live(self, key: str) -> Optional[tuple[Value, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        deadline = entry[1]
        if deadline is not None and deadline <= self._clock():
            del self._data[key]
            return None
        return entry


class RedisCache(Cache):
    """
    Cache backed by a shared Redis server.

    Needs Redis server 7.0+ (`EXPIRE ... NX`) and redis-py 5.0.1+ (`aclose`).
    """

    name = "redis"

    def __init__(self, client: aioredis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCache":
        client = aioredis.from_url(url, decode_responses=True, max_connections=50)
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.client.get(key)
        except RedisError as exc:
            raise DependencyUnavailable(f"redis get failed: {exc}") from exc

    async def set(self, key: str, value: Value, ttl: Optional[int] = None) -> None:
        try:
            await self.client.set(key, value, ex=ttl or None)
        except RedisError as exc:
            raise DependencyUnavailable(f"redis set failed: {exc}") from exc

    async def incr(self, key: str, ttl: Optional[int] = None) -> int:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(key)
            if ttl:
                # NX: only the increment that creates the key sets its expiry
                pipe.expire(key, ttl, nx=True)
            results = await pipe.execute()
            return int(results[0])
        except RedisError as exc:
            raise DependencyUnavailable(f"redis incr failed: {exc}") from exc

    async def expire(self, key: str, seconds: int) -> bool:
        try:
            return bool(await self.client.expire(key, seconds))
        except RedisError as exc:
            raise DependencyUnavailable(f"redis expire failed: {exc}") from exc

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(key))
        except RedisError as exc:
            raise DependencyUnavailable(f"redis exists failed: {exc}") from exc

    async def delete(self, key: str) -> int:
        try:
            return int(await self.client.delete(key))
        except RedisError as exc:
            raise DependencyUnavailable(f"redis delete failed: {exc}") from exc

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self.client.aclose()


class CacheManager:
    """Owns the active cache backend and its lifecycle."""

    def __init__(self, redis_url: Optional[str] = None) -> None:
        self.redis_url = redis_url
        self.cache: Cache = MemoryCache()

    async def connect(self) -> Cache:
        """Connect to Redis when configured; fall back to the in-process cache."""
        if self.redis_url:
            candidate = RedisCache.from_url(self.redis_url)
            try:
                await candidate.client.ping()
            except (RedisError, OSError) as exc:
                logger.warning(
                    "Redis unavailable (%s) - using in-process cache. "
                    "Counters will not be shared between workers.",
                    exc,
                )
                await candidate.close()
            else:
                self.cache = candidate
                logger.info("Redis connected: %s", self.redis_url)
                return self.cache

        if isinstance(self.cache, MemoryCache):
            self.cache.start()
        logger.info("Using in-process cache")
        return self.cache

    async def disconnect(self) -> None:
        await self.cache.close()
        logger.info("Cache %s closed", self.cache.name)

    async def health_check(self) -> bool:
        try:
            return await self.cache.ping()
        except Exception:
            return False
