"""
Riskgate - Site key validation.

Site-key ownership, tiers and API-key management live in the surrounding
web application. The scoring core only asks whether a key is active.
"""

from __future__ import annotations

from typing import Iterable, Optional


class SiteKeyValidator:
    """Base validator: every non-empty key is active."""

    async def is_active(self, site_key: str) -> bool:
        return bool(site_key)


class StaticSiteKeyValidator(SiteKeyValidator):
    """Allow-list validator; without an allow-list any non-empty key passes."""

    def __init__(self, allowed: Optional[Iterable[str]] = None) -> None:
        self.allowed = set(allowed) if allowed is not None else None

    async def is_active(self, site_key: str) -> bool:
        if not site_key:
            return False
        if self.allowed is None:
            return True
        return site_key in self.allowed
