"""
Riskgate - Authoritative store (async SQLAlchemy).

Stores challenges, the blacklist and the abuse log. The cache in front of
it is an optimization only; every decision that matters is checked here.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from riskgate.detection.risk import RiskLevel, Severity

logger = logging.getLogger("riskgate.storage.database")


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation used in every table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BlacklistType(str, Enum):
    IP = "IP"
    FINGERPRINT = "FINGERPRINT"
    EMAIL = "EMAIL"


# ── ORM Base ─────────────────────────────────────────────


class Base(DeclarativeBase):
    pass


# ── Models ───────────────────────────────────────────────


class Challenge(Base):
    """One verification attempt bound to a single-use bearer token."""
    __tablename__ = "challenges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    challenge_id = Column(String(36), nullable=False, unique=True, index=True)
    token = Column(String(128), nullable=False, unique=True, index=True)
    site_key = Column(String(255), nullable=False, index=True)
    action = Column(String(100), nullable=False, default="verify")
    fingerprint = Column(String(255), nullable=False, index=True)
    ip_address = Column(String(45), nullable=False)
    user_agent = Column(Text, nullable=True)

    score = Column(Integer, nullable=False)        # trust: 100 = most human
    risk_level = Column(SAEnum(RiskLevel, native_enum=False, length=10), nullable=False)
    requires_interaction = Column(Boolean, nullable=False, default=False)

    bot_score = Column(Integer, nullable=False, default=0)
    abuse_score = Column(Integer, nullable=False, default=0)
    vpn_detected = Column(Boolean, nullable=False, default=False)
    proxy_detected = Column(Boolean, nullable=False, default=False)
    tor_detected = Column(Boolean, nullable=False, default=False)

    geo_country = Column(String(2), nullable=True)
    geo_region = Column(String(100), nullable=True)
    geo_city = Column(String(100), nullable=True)

    verified = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False, index=True)


class BlacklistEntry(Base):
    """Standing deny-list entry, timed or permanent."""
    __tablename__ = "blacklist"
    __table_args__ = (UniqueConstraint("type", "value", name="uq_blacklist_type_value"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(SAEnum(BlacklistType, native_enum=False, length=12), nullable=False)
    value = Column(String(255), nullable=False, index=True)
    reason = Column(Text, nullable=True)
    permanent = Column(Boolean, nullable=False, default=False)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class AbuseLog(Base):
    """Persisted abuse event."""
    __tablename__ = "abuse_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ip_address = Column(String(45), nullable=False, index=True)
    fingerprint = Column(String(255), nullable=True)
    site_key = Column(String(255), nullable=True)
    reason = Column(Text, nullable=False)
    severity = Column(SAEnum(Severity, native_enum=False, length=10), nullable=False)
    metadata_json = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


# ── Engine & Session ─────────────────────────────────────


class Database:
    """Async engine plus session factory for one database URL."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.engine = create_async_engine(url, echo=False)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False,
        )

    async def init(self) -> None:
        """Create all tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created / verified")

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            yield session

    async def health_check(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception:
            return False
