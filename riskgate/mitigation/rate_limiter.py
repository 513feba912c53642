"""
Riskgate - Cache-backed Rate Limiter.

Window counters keyed by (scope, identifier, time bucket). Every request
performs one atomic increment and compares the returned count with the
limit, so concurrent requests for the same key can never lose updates.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from riskgate.storage.cache import Cache

logger = logging.getLogger("riskgate.mitigation.rate_limiter")


class RateScope(str, Enum):
    IP = "ip"
    FINGERPRINT = "fp"
    ATTACK = "attack"


@dataclass
class RateLimitResult:
    limited: bool
    current: int
    remaining: int
    limit: int


class RateLimiter:
    """Fixed-window counters on top of ``Cache.incr``."""

    def __init__(self, cache: Cache, clock: Callable[[], float] = time.time) -> None:
        self.cache = cache
        self._clock = clock

    async def check(
        self, scope: RateScope, identifier: str, limit: int, window_sec: int,
    ) -> RateLimitResult:
        """Count this request and report whether the window limit is exceeded."""
        key = self.key_for(scope, identifier, window_sec)
        try:
            current = await self.cache.incr(key, ttl=window_sec)
        except Exception:
            # No counter store → fail-open
            logger.warning("Rate counter unavailable for %s", key, exc_info=True)
            return RateLimitResult(limited=False, current=0, remaining=limit, limit=limit)

        return RateLimitResult(
            limited=current > limit,
            current=current,
            remaining=max(0, limit - current),
            limit=limit,
        )

    def key_for(self, scope: RateScope, identifier: str, window_sec: int) -> str:
        bucket = int(self._clock() // window_sec)
        return f"rl:{scope.value}:{identifier}:{bucket}"
