"""
Riskgate - Expiry sweeper.

Background task that periodically removes expired challenges and lapsed
blacklist entries. Its cadence only affects storage, never correctness.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from riskgate.mitigation.challenge import ChallengeManager

logger = logging.getLogger("riskgate.mitigation.sweeper")


class Sweeper:
    """Runs ``ChallengeManager.sweep`` on a fixed interval."""

    def __init__(self, challenges: ChallengeManager, interval_sec: float = 300.0) -> None:
        self.challenges = challenges
        self.interval_sec = interval_sec
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Sweeper started (every %.0fs)", self.interval_sec)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Sweeper stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_sec)
                await self.challenges.sweep()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in sweep loop")
