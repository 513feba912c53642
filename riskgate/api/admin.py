"""
Riskgate - Admin API Routes.

Operator endpoints: blacklist management, on-demand IP analysis and a
manual expiry sweep.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from riskgate.api.routes import get_services
from riskgate.errors import InvalidInput, NotFound
from riskgate.storage.database import BlacklistEntry, BlacklistType

router = APIRouter(prefix="/v1/admin", tags=["Admin API"])


# ── Schemas ──────────────────────────────────────────────


class BlacklistRequest(BaseModel):
    type: BlacklistType
    value: str = Field(min_length=1)
    reason: str = ""
    duration_sec: Optional[int] = Field(
        default=None, gt=0, description="Omit for a permanent entry",
    )


# ── Helpers ──────────────────────────────────────────────


def _entry_dict(entry: BlacklistEntry) -> dict:
    return {
        "type": entry.type.value,
        "value": entry.value,
        "reason": entry.reason,
        "permanent": entry.permanent,
        "expires_at": entry.expires_at.isoformat() if entry.expires_at is not None else None,
        "created_at": entry.created_at.isoformat() if entry.created_at is not None else None,
    }


def _parse_type(raw: str) -> BlacklistType:
    try:
        return BlacklistType(raw.upper())
    except ValueError:
        raise InvalidInput(
            f"Invalid blacklist type. Use: {[t.value for t in BlacklistType]}"
        )


# ── Endpoints ────────────────────────────────────────────


@router.get("/blacklist")
async def list_blacklist(
    request: Request,
    include_expired: bool = Query(False),
):
    """List blacklist entries, active ones only by default."""
    entries = await get_services(request).blacklist.list_entries(include_expired)
    return {"entries": [_entry_dict(e) for e in entries], "count": len(entries)}


@router.post("/blacklist")
async def add_blacklist(req: BlacklistRequest, request: Request):
    """Add a permanent or timed blacklist entry."""
    blacklist = get_services(request).blacklist
    if req.duration_sec is None:
        await blacklist.add_permanent(req.type, req.value, req.reason)
    else:
        await blacklist.block_temporarily(req.type, req.value, req.duration_sec, req.reason)
    return {
        "status": "blocked",
        "type": req.type.value,
        "value": req.value,
        "permanent": req.duration_sec is None,
    }


@router.delete("/blacklist/{entry_type}/{value}")
async def remove_blacklist(entry_type: str, value: str, request: Request):
    """Remove a blacklist entry."""
    parsed = _parse_type(entry_type)
    if not await get_services(request).blacklist.remove(parsed, value):
        raise NotFound("Blacklist entry not found")
    return {"status": "unblocked", "type": parsed.value, "value": value}


@router.get("/ip/{ip}")
async def analyze_ip(ip: str, request: Request):
    """Run (or fetch the cached) reputation analysis for one address."""
    analysis = await get_services(request).ip_reputation.analyze_ip(ip)
    data = asdict(analysis)
    data["risk_level"] = analysis.risk_level.value
    return {"ip": ip, **data}


@router.post("/sweep")
async def trigger_sweep(request: Request):
    """Manually reclaim expired challenges and lapsed blacklist entries."""
    removed = await get_services(request).challenges.sweep()
    return {"status": "ok", "removed": removed}
