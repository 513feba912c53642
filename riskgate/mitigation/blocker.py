"""
Riskgate - Blacklist.

IPs, fingerprints and emails can be blocked for a duration or permanently.
Blocks are mirrored into the cache for fast positive answers, but a cache
miss always falls through to the database before a client is let through.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError

from riskgate.storage.cache import Cache
from riskgate.storage.database import BlacklistEntry, BlacklistType, Database, utcnow

logger = logging.getLogger("riskgate.mitigation.blocker")

_KEY_PREFIX = {
    BlacklistType.IP: "blacklist:ip:",
    BlacklistType.FINGERPRINT: "blacklist:fp:",
    BlacklistType.EMAIL: "blacklist:email:",
}


def cache_key(entry_type: BlacklistType, value: str) -> str:
    return f"{_KEY_PREFIX[entry_type]}{value}"


class Blacklist:
    """Manages blacklist entries in the database with a cache in front."""

    def __init__(self, cache: Cache, database: Database) -> None:
        self.cache = cache
        self.database = database

    async def is_blacklisted(self, ip: str, fingerprint: Optional[str] = None) -> bool:
        """True if the IP or the fingerprint has an active entry."""
        candidates = [(BlacklistType.IP, ip)]
        if fingerprint:
            candidates.append((BlacklistType.FINGERPRINT, fingerprint))

        for entry_type, value in candidates:
            try:
                if await self.cache.exists(cache_key(entry_type, value)):
                    return True
            except Exception:
                logger.warning("Blacklist cache lookup failed", exc_info=True)
                break

        # Authoritative check
        now = utcnow()
        stmt = select(BlacklistEntry.id).where(
            and_(
                or_(*(
                    and_(BlacklistEntry.type == t, BlacklistEntry.value == v)
                    for t, v in candidates
                )),
                or_(BlacklistEntry.permanent.is_(True), BlacklistEntry.expires_at > now),
            )
        ).limit(1)
        async with self.database.session() as session:
            found = (await session.execute(stmt)).scalar_one_or_none()
        return found is not None

    async def block_temporarily(
        self,
        entry_type: BlacklistType,
        value: str,
        duration_sec: int,
        reason: str = "Temporary block due to abuse",
    ) -> None:
        """Block ``value`` until now + ``duration_sec``; never shortens a permanent ban."""
        expires_at = utcnow() + timedelta(seconds=duration_sec)
        await self._upsert(entry_type, value, reason, permanent=False, expires_at=expires_at)
        await self._cache_set(entry_type, value, duration_sec)
        logger.info("Blocked %s %s for %ds - reason: %s", entry_type.value, value, duration_sec, reason)

    async def add_permanent(self, entry_type: BlacklistType, value: str, reason: str) -> None:
        """Permanently block ``value``."""
        await self._upsert(entry_type, value, reason, permanent=True, expires_at=None)
        await self._cache_set(entry_type, value, None)
        logger.info("Permanently blocked %s %s - reason: %s", entry_type.value, value, reason)

    async def remove(self, entry_type: BlacklistType, value: str) -> bool:
        """Remove an entry from both stores."""
        async with self.database.session() as session:
            result = await session.execute(
                delete(BlacklistEntry).where(
                    BlacklistEntry.type == entry_type, BlacklistEntry.value == value,
                )
            )
            await session.commit()
        try:
            await self.cache.delete(cache_key(entry_type, value))
        except Exception:
            logger.warning("Failed to clear cached block for %s", value, exc_info=True)
        removed = bool(result.rowcount)
        if removed:
            logger.info("Unblocked %s %s", entry_type.value, value)
        return removed

    async def list_entries(self, include_expired: bool = False) -> list[BlacklistEntry]:
        stmt = select(BlacklistEntry).order_by(BlacklistEntry.created_at.desc())
        if not include_expired:
            stmt = stmt.where(
                or_(BlacklistEntry.permanent.is_(True), BlacklistEntry.expires_at > utcnow())
            )
        async with self.database.session() as session:
            return list((await session.execute(stmt)).scalars())

    async def purge_expired(self) -> int:
        """Delete timed entries whose block has lapsed."""
        async with self.database.session() as session:
            result = await session.execute(
                delete(BlacklistEntry).where(
                    BlacklistEntry.permanent.is_(False), BlacklistEntry.expires_at <= utcnow(),
                )
            )
            await session.commit()
        return result.rowcount or 0

    # ── Internal ─────────────────────────────────────────

    async def _upsert(
        self,
        entry_type: BlacklistType,
        value: str,
        reason: str,
        permanent: bool,
        expires_at: Optional[datetime],
    ) -> None:
        # Two attempts: a concurrent insert of the same (type, value) turns
        # the second try into an update of the row that won.
        for attempt in range(2):
            async with self.database.session() as session:
                entry = await self._find(session, entry_type, value)
                if entry is None:
                    session.add(BlacklistEntry(
                        type=entry_type, value=value, reason=reason,
                        permanent=permanent, expires_at=expires_at,
                    ))
                elif permanent or not entry.permanent:
                    entry.reason = reason
                    entry.permanent = permanent
                    entry.expires_at = expires_at
                try:
                    await session.commit()
                    return
                except IntegrityError:
                    await session.rollback()
                    if attempt:
                        raise

    @staticmethod
    async def _find(session, entry_type: BlacklistType, value: str) -> Optional[BlacklistEntry]:
        stmt = select(BlacklistEntry).where(
            BlacklistEntry.type == entry_type, BlacklistEntry.value == value,
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    async def _cache_set(self, entry_type: BlacklistType, value: str, ttl: Optional[int]) -> None:
        try:
            await self.cache.set(cache_key(entry_type, value), "1", ttl=ttl)
        except Exception:
            logger.warning("Failed to cache block for %s", value, exc_info=True)
