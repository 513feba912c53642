"""
Riskgate - Abuse / Rate Pattern Detector.

Ordered checks, first block wins:
  1. Blacklist (IP or fingerprint)
  2. Per-IP window counter, escalating to a temporary block on repeat violations
  3. Per-fingerprint window counter (challenge only)
  4. Distributed attack on a site key (challenge only)
  5. Accumulated HIGH / CRITICAL abuse for the IP, escalating to a longer block
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import func, select

from riskgate.config import Settings
from riskgate.detection.risk import Severity
from riskgate.mitigation.blocker import Blacklist
from riskgate.mitigation.rate_limiter import RateLimiter, RateScope
from riskgate.storage.database import AbuseLog, BlacklistType, Database, utcnow

logger = logging.getLogger("riskgate.mitigation.abuse")

GLOBAL_SCOPE = "global"


@dataclass
class AbuseDecision:
    blocked: bool
    severity: Severity
    should_challenge: bool
    reason: Optional[str] = None


class AbuseDetector:
    """Evaluates rate and abuse state for one request."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        blacklist: Blacklist,
        database: Database,
        settings: Settings,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.blacklist = blacklist
        self.database = database
        self.settings = settings

    async def detect(
        self, ip: str, fingerprint: str, scope: Optional[str] = None,
    ) -> AbuseDecision:
        s = self.settings

        # ── 1. Blacklist ─────────────────────────────────
        if await self.blacklist.is_blacklisted(ip, fingerprint):
            return AbuseDecision(
                blocked=True,
                severity=Severity.CRITICAL,
                should_challenge=False,
                reason="IP or fingerprint is blacklisted",
            )

        # ── 2. Per-IP window ─────────────────────────────
        ip_rate = await self.rate_limiter.check(
            RateScope.IP, ip, s.ip_rate_limit, s.ip_rate_window,
        )
        if ip_rate.limited:
            await self.log_abuse(
                ip, "Rate limit exceeded", Severity.MEDIUM,
                fingerprint=fingerprint, site_key=scope,
                metadata={"requestCount": ip_rate.current},
            )
            violations = await self.violation_count(ip, s.violation_window)
            if violations > s.violation_threshold:
                await self.blacklist.block_temporarily(
                    BlacklistType.IP, ip, s.violation_block_seconds,
                    reason="Multiple rate limit violations",
                )
                await self.log_abuse(
                    ip, "Temporary block after rate limit violations", Severity.HIGH,
                    fingerprint=fingerprint, site_key=scope,
                    metadata={"violations": violations},
                )
                return AbuseDecision(
                    blocked=True,
                    severity=Severity.HIGH,
                    should_challenge=False,
                    reason="Multiple rate limit violations",
                )
            return AbuseDecision(
                blocked=False,
                severity=Severity.MEDIUM,
                should_challenge=True,
                reason="Rate limit exceeded",
            )

        # ── 3. Per-fingerprint window ────────────────────
        fp_rate = await self.rate_limiter.check(
            RateScope.FINGERPRINT, fingerprint,
            s.fingerprint_rate_limit, s.fingerprint_rate_window,
        )
        if fp_rate.limited:
            await self.log_abuse(
                ip, "Fingerprint rate limit exceeded", Severity.MEDIUM,
                fingerprint=fingerprint, site_key=scope,
                metadata={"requestCount": fp_rate.current},
            )
            return AbuseDecision(
                blocked=False,
                severity=Severity.MEDIUM,
                should_challenge=True,
                reason="Too many requests from same fingerprint",
            )

        # ── 4. Distributed attack ────────────────────────
        attack = await self.rate_limiter.check(
            RateScope.ATTACK, scope or GLOBAL_SCOPE, s.attack_threshold, s.attack_window,
        )
        if attack.limited:
            logger.info(
                "Distributed attack suspected on %s (%d requests / %ds)",
                scope or GLOBAL_SCOPE, attack.current, s.attack_window,
            )
            return AbuseDecision(
                blocked=False,
                severity=Severity.HIGH,
                should_challenge=True,
                reason="Distributed attack detected",
            )

        # ── 5. Accumulated abuse ─────────────────────────
        recent = await self.recent_abuse_count(ip, s.abuse_history_window)
        if recent > s.abuse_history_threshold:
            await self.blacklist.block_temporarily(
                BlacklistType.IP, ip, s.abuse_block_seconds,
                reason="Repeated abuse detected",
            )
            return AbuseDecision(
                blocked=True,
                severity=Severity.CRITICAL,
                should_challenge=False,
                reason="Repeated abuse detected",
            )

        return AbuseDecision(blocked=False, severity=Severity.LOW, should_challenge=False)

    # ── Abuse log ────────────────────────────────────────

    async def log_abuse(
        self,
        ip: str,
        reason: str,
        severity: Severity,
        fingerprint: Optional[str] = None,
        site_key: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Persist an abuse event (best-effort)."""
        try:
            async with self.database.session() as session:
                session.add(AbuseLog(
                    ip_address=ip,
                    fingerprint=fingerprint,
                    site_key=site_key,
                    reason=reason,
                    severity=severity,
                    metadata_json=json.dumps(metadata) if metadata else None,
                ))
                await session.commit()
        except Exception:
            logger.warning("Failed to write abuse log for %s", ip, exc_info=True)

    async def violation_count(self, ip: str, window_sec: int) -> int:
        """Abuse events of any severity for ``ip`` in the trailing window."""
        return await self._count(ip, window_sec)

    async def recent_abuse_count(self, ip: str, window_sec: int) -> int:
        """HIGH / CRITICAL abuse events for ``ip`` in the trailing window."""
        return await self._count(ip, window_sec, severities=(Severity.HIGH, Severity.CRITICAL))

    async def _count(
        self, ip: str, window_sec: int, severities: Optional[tuple[Severity, ...]] = None,
    ) -> int:
        since = utcnow() - timedelta(seconds=window_sec)
        stmt = select(func.count(AbuseLog.id)).where(
            AbuseLog.ip_address == ip, AbuseLog.created_at >= since,
        )
        if severities:
            stmt = stmt.where(AbuseLog.severity.in_(severities))
        try:
            async with self.database.session() as session:
                return int((await session.execute(stmt)).scalar_one())
        except Exception:
            logger.warning("Abuse log count failed for %s", ip, exc_info=True)
            return 0
