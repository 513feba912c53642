"""
Tests for the background expiry sweeper.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from riskgate.mitigation.sweeper import Sweeper


@pytest.mark.asyncio
async def test_sweeper_runs_periodically():
    challenges = MagicMock()
    challenges.sweep = AsyncMock(return_value={"challenges": 0, "blacklist": 0})
    sweeper = Sweeper(challenges, interval_sec=0.01)

    await sweeper.start()
    assert sweeper.running
    await asyncio.sleep(0.1)
    await sweeper.stop()

    assert not sweeper.running
    assert challenges.sweep.await_count >= 1


@pytest.mark.asyncio
async def test_sweeper_survives_errors():
    challenges = MagicMock()
    challenges.sweep = AsyncMock(side_effect=RuntimeError("db down"))
    sweeper = Sweeper(challenges, interval_sec=0.01)

    await sweeper.start()
    await asyncio.sleep(0.1)
    await sweeper.stop()

    assert challenges.sweep.await_count >= 2
