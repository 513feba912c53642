"""
Tests for the abuse / rate pattern detector.
"""

import pytest

from riskgate.config import Settings
from riskgate.detection.risk import Severity
from riskgate.mitigation.abuse import AbuseDetector
from riskgate.mitigation.blocker import Blacklist
from riskgate.mitigation.rate_limiter import RateLimiter
from riskgate.storage.cache import MemoryCache
from riskgate.storage.database import BlacklistType


def _frozen() -> float:
    return 1_000_000.0


@pytest.fixture
def make_detector(database):
    def _make(**overrides) -> AbuseDetector:
        cache = MemoryCache(clock=_frozen)
        return AbuseDetector(
            rate_limiter=RateLimiter(cache, clock=_frozen),
            blacklist=Blacklist(cache, database),
            database=database,
            settings=Settings(**overrides),
        )
    return _make


@pytest.mark.asyncio
async def test_clean_request(make_detector):
    decision = await make_detector().detect("8.8.8.8", "fp", "site")
    assert not decision.blocked
    assert not decision.should_challenge
    assert decision.severity == Severity.LOW


@pytest.mark.asyncio
async def test_blacklisted_is_blocked(make_detector):
    detector = make_detector()
    await detector.blacklist.add_permanent(BlacklistType.IP, "8.8.8.8", "manual")
    decision = await detector.detect("8.8.8.8", "fp", "site")
    assert decision.blocked
    assert decision.severity == Severity.CRITICAL


@pytest.mark.asyncio
async def test_ip_rate_limit_challenges_then_blocks(make_detector):
    """Over-limit requests are challenged; repeated violations earn a block."""
    detector = make_detector(ip_rate_limit=2, violation_threshold=1)
    for _ in range(2):
        assert not (await detector.detect("8.8.8.8", "fp", "site")).should_challenge

    third = await detector.detect("8.8.8.8", "fp", "site")
    assert not third.blocked
    assert third.should_challenge
    assert third.severity == Severity.MEDIUM

    fourth = await detector.detect("8.8.8.8", "fp", "site")
    assert fourth.blocked
    assert fourth.severity == Severity.HIGH
    assert await detector.blacklist.is_blacklisted("8.8.8.8")
    assert await detector.recent_abuse_count("8.8.8.8", 3600) == 1

    fifth = await detector.detect("8.8.8.8", "fp", "site")
    assert fifth.blocked
    assert fifth.severity == Severity.CRITICAL


@pytest.mark.asyncio
async def test_fingerprint_rate_limit(make_detector):
    detector = make_detector(fingerprint_rate_limit=2)
    for i in range(2):
        await detector.detect(f"8.8.8.{i}", "shared", "site")
    decision = await detector.detect("8.8.8.9", "shared", "site")
    assert decision.should_challenge
    assert not decision.blocked
    assert decision.reason == "Too many requests from same fingerprint"


@pytest.mark.asyncio
async def test_distributed_attack_challenges_without_block(make_detector):
    """101st request to a site within the attack window is challenged, not blocked."""
    detector = make_detector()
    for i in range(100):
        d = await detector.detect(f"9.{i // 250}.{i % 250}.1", f"fp-{i}", "site")
        assert not d.should_challenge
    decision = await detector.detect("9.9.9.9", "fp-last", "site")
    assert decision.should_challenge
    assert not decision.blocked
    assert decision.severity == Severity.HIGH


@pytest.mark.asyncio
async def test_attack_counter_is_per_scope(make_detector):
    detector = make_detector(attack_threshold=1)
    await detector.detect("8.8.8.1", "fp1", "site-a")
    assert not (await detector.detect("8.8.8.2", "fp2", "site-b")).should_challenge
    assert (await detector.detect("8.8.8.3", "fp3", "site-a")).should_challenge


@pytest.mark.asyncio
async def test_accumulated_abuse_blocks(make_detector):
    detector = make_detector(abuse_history_threshold=2)
    for _ in range(3):
        await detector.log_abuse("6.6.6.6", "Fingerprint mismatch", Severity.HIGH)
    # Medium events don't count toward the history threshold
    await detector.log_abuse("5.5.5.5", "Rate limit exceeded", Severity.MEDIUM)

    decision = await detector.detect("6.6.6.6", "fp", "site")
    assert decision.blocked
    assert decision.severity == Severity.CRITICAL
    assert await detector.blacklist.is_blacklisted("6.6.6.6")
    assert not (await detector.detect("5.5.5.5", "fp", "site")).blocked
