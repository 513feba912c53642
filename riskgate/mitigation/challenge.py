"""
Riskgate - Challenge Lifecycle.

A challenge binds a risk verdict to a single-use bearer token:

    CREATED ──verify──▶ VERIFIED
       │
       └──(expires_at passes)──▶ EXPIRED

Verification is accepted at most once and never after expiry; the
periodic sweep only reclaims storage, correctness does not depend on it.
Public scores are trust scores (100 = most human); the bot, abuse and
overall scores used to derive them are risk scores.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError

from riskgate.config import Settings
from riskgate.detection.behavior import BehaviorAnalyzer, Keystroke, MousePoint
from riskgate.detection.fingerprint import FingerprintSignals, resolve_fingerprint
from riskgate.detection.risk import RiskLevel, Severity, clamp_score, max_level
from riskgate.errors import (
    AlreadyVerified,
    Expired,
    FingerprintMismatch,
    InvalidInput,
    NotFound,
    PersistenceError,
    PolicyBlocked,
)
from riskgate.intel.ip_reputation import IPReputationAggregator
from riskgate.mitigation.abuse import AbuseDetector
from riskgate.mitigation.blocker import Blacklist
from riskgate.sitekeys import SiteKeyValidator
from riskgate.storage.database import Challenge, Database, utcnow

logger = logging.getLogger("riskgate.mitigation.challenge")

TOKEN_BYTES = 32  # 256 bits
HISTORY_WINDOW = timedelta(hours=1)


@dataclass
class CreateChallengeRequest:
    """Inputs of one create call, already extracted from the transport."""
    site_key: str
    ip_address: str
    user_agent: str = ""
    action: str = "verify"
    fingerprint: Optional[str] = None
    signals: FingerprintSignals = field(default_factory=FingerprintSignals)
    mouse_movements: Optional[Sequence[MousePoint]] = None
    keystrokes: Optional[Sequence[Keystroke]] = None
    request_timings: Optional[Sequence[float]] = None


@dataclass
class ChallengeIssued:
    challenge_id: str
    token: str
    requires_interaction: bool
    expires_at: datetime
    score: int
    risk_level: RiskLevel


@dataclass
class VerificationResult:
    score: int
    risk_level: RiskLevel
    bot_score: int
    vpn_detected: bool
    proxy_detected: bool
    tor_detected: bool
    abuse_score: int
    fingerprint_mismatch: bool = False


@dataclass
class ChallengeStatus:
    challenge_id: str
    verified: bool
    expired: bool
    score: int
    risk_level: RiskLevel


class ChallengeManager:
    """Issues, verifies and reports on challenges."""

    def __init__(
        self,
        database: Database,
        behavior: BehaviorAnalyzer,
        ip_reputation: IPReputationAggregator,
        abuse: AbuseDetector,
        blacklist: Blacklist,
        site_keys: SiteKeyValidator,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self.behavior = behavior
        self.ip_reputation = ip_reputation
        self.abuse = abuse
        self.blacklist = blacklist
        self.site_keys = site_keys
        self.settings = settings
        self._clock = clock

    # ── Create ───────────────────────────────────────────

    async def create(self, req: CreateChallengeRequest) -> ChallengeIssued:
        if not req.site_key or not req.site_key.strip():
            raise InvalidInput("siteKey is required")
        if not await self.site_keys.is_active(req.site_key):
            raise NotFound("Invalid site key")

        fingerprint = resolve_fingerprint(req.fingerprint, req.signals)

        decision = await self.abuse.detect(req.ip_address, fingerprint, req.site_key)
        if decision.blocked:
            logger.info(
                "Blocked challenge for %s on %s: %s", req.ip_address, req.site_key, decision.reason,
            )
            raise PolicyBlocked(decision.reason or "Request blocked", decision.severity.value)

        previous, ip = await asyncio.gather(
            self._recent_challenge_count(fingerprint),
            self.ip_reputation.analyze_ip(req.ip_address),
        )
        bot = self.behavior.analyze(
            user_agent=req.user_agent,
            fingerprint=fingerprint,
            ip_address=req.ip_address,
            mouse_movements=req.mouse_movements,
            keystrokes=req.keystrokes,
            request_timings=req.request_timings,
            previous_challenge_count=previous,
        )

        overall = clamp_score(
            bot.score * self.settings.bot_score_weight
            + ip.abuse_score * self.settings.abuse_score_weight
        )
        requires_interaction = (
            overall > self.settings.interaction_threshold or decision.should_challenge
        )
        risk_level = max_level(bot.risk_level, ip.risk_level)

        now = self._clock()
        challenge = Challenge(
            challenge_id=str(uuid.uuid4()),
            token=secrets.token_hex(TOKEN_BYTES),
            site_key=req.site_key,
            action=req.action or "verify",
            fingerprint=fingerprint,
            ip_address=req.ip_address,
            user_agent=req.user_agent,
            score=100 - overall,
            risk_level=risk_level,
            requires_interaction=requires_interaction,
            bot_score=bot.score,
            abuse_score=ip.abuse_score,
            vpn_detected=ip.vpn_detected,
            proxy_detected=ip.proxy_detected,
            tor_detected=ip.tor_detected,
            geo_country=ip.country,
            geo_region=ip.region,
            geo_city=ip.city,
            verified=False,
            created_at=now,
            expires_at=now + timedelta(seconds=self.settings.challenge_ttl_seconds),
        )
        try:
            async with self.database.session() as session:
                session.add(challenge)
                await session.commit()
        except SQLAlchemyError as exc:
            logger.error("Failed to persist challenge for %s: %s", req.site_key, exc)
            raise PersistenceError("Failed to create challenge") from exc

        logger.debug(
            "Challenge %s issued: bot=%d abuse=%d overall=%d signals=%s",
            challenge.challenge_id, bot.score, ip.abuse_score, overall, bot.signals,
        )
        return ChallengeIssued(
            challenge_id=challenge.challenge_id,
            token=challenge.token,
            requires_interaction=requires_interaction,
            expires_at=challenge.expires_at,
            score=challenge.score,
            risk_level=risk_level,
        )

    # ── Verify ───────────────────────────────────────────

    async def verify(
        self,
        token: str,
        fingerprint: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VerificationResult:
        if not token:
            raise InvalidInput("token is required")
        now = now or self._clock()

        async with self.database.session() as session:
            challenge = (await session.execute(
                select(Challenge).where(Challenge.token == token)
            )).scalar_one_or_none()

            if challenge is None:
                raise NotFound("Challenge not found")
            if challenge.verified:
                raise AlreadyVerified("Challenge already verified")
            if now > challenge.expires_at:
                raise Expired("Challenge expired")

            score = challenge.score
            risk_level = challenge.risk_level
            mismatch = bool(fingerprint) and fingerprint != challenge.fingerprint
            if mismatch:
                if self.settings.strict_fingerprint_binding:
                    await self.abuse.log_abuse(
                        challenge.ip_address, "Fingerprint mismatch", Severity.HIGH,
                        fingerprint=fingerprint, site_key=challenge.site_key,
                    )
                    raise FingerprintMismatch("Fingerprint mismatch")
                score = max(0, score - self.settings.fingerprint_mismatch_penalty)
                risk_level = RiskLevel.HIGH

            # Conditional flip: of two concurrent verifies only one matches
            result = await session.execute(
                update(Challenge)
                .where(Challenge.id == challenge.id, Challenge.verified.is_(False))
                .values(verified=True, verified_at=now, score=score, risk_level=risk_level)
            )
            if result.rowcount != 1:
                await session.rollback()
                raise AlreadyVerified("Challenge already verified")
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                raise PersistenceError("Failed to verify challenge") from exc

        if mismatch:
            logger.info("Fingerprint drift on challenge %s, score %d", challenge.challenge_id, score)
        return VerificationResult(
            score=score,
            risk_level=risk_level,
            bot_score=challenge.bot_score,
            vpn_detected=challenge.vpn_detected,
            proxy_detected=challenge.proxy_detected,
            tor_detected=challenge.tor_detected,
            abuse_score=challenge.abuse_score,
            fingerprint_mismatch=mismatch,
        )

    # ── Status ───────────────────────────────────────────

    async def status(self, challenge_id: str, now: Optional[datetime] = None) -> ChallengeStatus:
        now = now or self._clock()
        async with self.database.session() as session:
            challenge = (await session.execute(
                select(Challenge).where(Challenge.challenge_id == challenge_id)
            )).scalar_one_or_none()
        if challenge is None:
            raise NotFound("Challenge not found")
        return ChallengeStatus(
            challenge_id=challenge.challenge_id,
            verified=challenge.verified,
            expired=challenge.expires_at < now,
            score=challenge.score,
            risk_level=challenge.risk_level,
        )

    # ── Maintenance ──────────────────────────────────────

    async def sweep(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Delete expired challenges and lapsed timed blacklist entries."""
        now = now or self._clock()
        async with self.database.session() as session:
            result = await session.execute(
                delete(Challenge).where(Challenge.expires_at < now)
            )
            await session.commit()
        challenges = result.rowcount or 0
        blacklist = await self.blacklist.purge_expired()
        if challenges or blacklist:
            logger.info(
                "Sweep removed %d expired challenge(s) and %d blacklist entries",
                challenges, blacklist,
            )
        return {"challenges": challenges, "blacklist": blacklist}

    # ── Internal ─────────────────────────────────────────

    async def _recent_challenge_count(self, fingerprint: str) -> Optional[int]:
        since = self._clock() - HISTORY_WINDOW
        try:
            async with self.database.session() as session:
                return int((await session.execute(
                    select(func.count(Challenge.id)).where(
                        Challenge.fingerprint == fingerprint,
                        Challenge.created_at >= since,
                    )
                )).scalar_one())
        except SQLAlchemyError:
            logger.warning("Challenge history lookup failed", exc_info=True)
            return None
