"""
Riskgate - Challenge API Routes.

Widget-facing endpoints: create, verify and status, plus a health probe.
Wire field names are camelCase; timestamps are ISO-8601.
"""

from __future__ import annotations

from datetime import datetime, timezone
from ipaddress import ip_address, ip_network
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, ConfigDict, Field, field_serializer
from pydantic.alias_generators import to_camel

from riskgate.detection.behavior import Keystroke, MousePoint
from riskgate.detection.fingerprint import signals_from_headers
from riskgate.mitigation.challenge import CreateChallengeRequest
from riskgate.services import Services

router = APIRouter(tags=["Challenge API"])

# Width of the fingerprint and site key columns
MAX_KEY_LENGTH = 255


# ── Schemas ──────────────────────────────────────────────


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MousePointIn(CamelModel):
    x: float
    y: float
    timestamp: float


class KeystrokeIn(CamelModel):
    key: str = ""
    timestamp: float


class CreateChallengeBody(CamelModel):
    site_key: str = Field(max_length=MAX_KEY_LENGTH)
    action: str = "verify"
    fingerprint: Optional[str] = Field(default=None, max_length=MAX_KEY_LENGTH)
    mouse_movements: Optional[list[MousePointIn]] = None
    keystrokes: Optional[list[KeystrokeIn]] = None
    request_timings: Optional[list[float]] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[int] = None
    canvas: Optional[str] = None
    webgl: Optional[str] = None
    fonts: Optional[list[str]] = None


class ChallengeMetadata(CamelModel):
    score: int
    risk_level: str


class CreateChallengeResponse(CamelModel):
    success: bool = True
    challenge_id: str
    token: str
    requires_interaction: bool
    expires_at: datetime
    metadata: ChallengeMetadata

    @field_serializer("expires_at")
    def serialize_expires_at(self, value: datetime) -> str:
        # Stored timestamps are naive UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat().replace("+00:00", "Z")


class VerifyChallengeBody(CamelModel):
    token: str
    fingerprint: Optional[str] = Field(default=None, max_length=MAX_KEY_LENGTH)


class VerificationMetadata(CamelModel):
    bot_score: int
    vpn_detected: bool
    proxy_detected: bool
    tor_detected: bool
    abuse_score: int


class VerifyChallengeResponse(CamelModel):
    success: bool = True
    score: int
    risk_level: str
    metadata: VerificationMetadata


class ChallengeStatusResponse(CamelModel):
    challenge_id: str
    verified: bool
    expired: bool
    score: int
    risk_level: str


# ── Helpers ──────────────────────────────────────────────


def get_services(request: Request) -> Services:
    return request.app.state.services


def _is_trusted_proxy(peer: str, trusted_proxies: list[str]) -> bool:
    try:
        addr = ip_address(peer)
    except ValueError:
        return False
    for entry in trusted_proxies:
        try:
            if addr in ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def get_client_ip(request: Request, trusted_proxies: Optional[list[str]] = None) -> str:
    """
    Resolve the caller address.

    The first X-Forwarded-For hop is honored only when the socket peer is one
    of ``trusted_proxies`` (addresses or CIDRs); otherwise the peer is used.
    """
    peer = request.client.host if request.client else "unknown"
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and trusted_proxies and _is_trusted_proxy(peer, trusted_proxies):
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return peer


# ── Endpoints ────────────────────────────────────────────


@router.post(
    "/v1/challenge/create",
    response_model=CreateChallengeResponse,
    response_model_by_alias=True,
)
async def create_challenge(body: CreateChallengeBody, request: Request):
    """Score the request and issue a single-use challenge token."""
    services = get_services(request)
    ip = get_client_ip(request, services.settings.trusted_proxies)

    signals = signals_from_headers(request.headers, ip)
    signals.screen_resolution = body.screen_resolution
    signals.timezone = body.timezone
    signals.canvas = body.canvas
    signals.webgl = body.webgl
    signals.fonts = body.fonts

    issued = await services.challenges.create(CreateChallengeRequest(
        site_key=body.site_key,
        ip_address=ip,
        user_agent=request.headers.get("user-agent", ""),
        action=body.action,
        fingerprint=body.fingerprint,
        signals=signals,
        mouse_movements=(
            [MousePoint(p.x, p.y, p.timestamp) for p in body.mouse_movements]
            if body.mouse_movements is not None else None
        ),
        keystrokes=(
            [Keystroke(k.key, k.timestamp) for k in body.keystrokes]
            if body.keystrokes is not None else None
        ),
        request_timings=body.request_timings,
    ))
    return CreateChallengeResponse(
        challenge_id=issued.challenge_id,
        token=issued.token,
        requires_interaction=issued.requires_interaction,
        expires_at=issued.expires_at,
        metadata=ChallengeMetadata(
            score=issued.score, risk_level=issued.risk_level.value,
        ),
    )


@router.post(
    "/v1/challenge/verify",
    response_model=VerifyChallengeResponse,
    response_model_by_alias=True,
)
async def verify_challenge(body: VerifyChallengeBody, request: Request):
    """Consume a token; succeeds at most once per challenge."""
    result = await get_services(request).challenges.verify(body.token, body.fingerprint)
    return VerifyChallengeResponse(
        score=result.score,
        risk_level=result.risk_level.value,
        metadata=VerificationMetadata(
            bot_score=result.bot_score,
            vpn_detected=result.vpn_detected,
            proxy_detected=result.proxy_detected,
            tor_detected=result.tor_detected,
            abuse_score=result.abuse_score,
        ),
    )


@router.get(
    "/v1/challenge/status/{challenge_id}",
    response_model=ChallengeStatusResponse,
    response_model_by_alias=True,
)
async def challenge_status(challenge_id: str, request: Request):
    status = await get_services(request).challenges.status(challenge_id)
    return ChallengeStatusResponse(
        challenge_id=status.challenge_id,
        verified=status.verified,
        expired=status.expired,
        score=status.score,
        risk_level=status.risk_level.value,
    )


@router.get("/health")
async def health(request: Request):
    services = get_services(request)
    cache_ok = await services.cache_manager.health_check()
    db_ok = await services.database.health_check()
    return {
        "status": "ok" if (cache_ok and db_ok) else "degraded",
        "cache": services.cache.name,
        "cacheOk": cache_ok,
        "databaseOk": db_ok,
    }
