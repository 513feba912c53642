"""
Tests for the cache-backed rate limiter.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from riskgate.errors import DependencyUnavailable
from riskgate.mitigation.rate_limiter import RateLimiter, RateScope
from riskgate.storage.cache import MemoryCache


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(MemoryCache(clock=clock), clock=clock)


@pytest.mark.asyncio
async def test_limit_reached(limiter: RateLimiter):
    results = [await limiter.check(RateScope.IP, "1.2.3.4", 3, 60) for _ in range(4)]
    assert [r.limited for r in results] == [False, False, False, True]
    assert results[0].remaining == 2
    assert results[3].current == 4


@pytest.mark.asyncio
async def test_concurrent_requests_allow_exactly_limit(limiter: RateLimiter):
    """N concurrent checks against limit M admit exactly M."""
    results = await asyncio.gather(*(
        limiter.check(RateScope.IP, "1.2.3.4", 10, 60) for _ in range(50)
    ))
    assert sum(1 for r in results if not r.limited) == 10
    assert sorted(r.current for r in results) == list(range(1, 51))


@pytest.mark.asyncio
async def test_scopes_and_identifiers_are_independent(limiter: RateLimiter):
    await limiter.check(RateScope.IP, "a", 1, 60)
    assert not (await limiter.check(RateScope.IP, "b", 1, 60)).limited
    assert not (await limiter.check(RateScope.FINGERPRINT, "a", 1, 60)).limited
    assert (await limiter.check(RateScope.IP, "a", 1, 60)).limited


@pytest.mark.asyncio
async def test_new_window_resets(limiter: RateLimiter, clock: FakeClock):
    for _ in range(3):
        await limiter.check(RateScope.IP, "x", 2, 60)
    clock.now += 60
    assert not (await limiter.check(RateScope.IP, "x", 2, 60)).limited


def test_key_format(limiter: RateLimiter, clock: FakeClock):
    bucket = int(clock.now // 60)
    assert limiter.key_for(RateScope.FINGERPRINT, "abc", 60) == f"rl:fp:abc:{bucket}"


@pytest.mark.asyncio
async def test_fails_open_without_counter_store():
    cache = MagicMock()
    cache.incr = AsyncMock(side_effect=DependencyUnavailable("down"))
    result = await RateLimiter(cache).check(RateScope.IP, "x", 5, 60)
    assert not result.limited
    assert result.remaining == 5
