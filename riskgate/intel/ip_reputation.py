"""
Riskgate - IP Reputation Aggregator.

Combines geolocation, VPN / proxy / Tor classification, hosting-provider
detection and external reputation providers into one abuse score.
Results are cached per IP; the cache is best-effort.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, Optional, Sequence

import httpx

from riskgate.detection.risk import RiskLevel, clamp_score, risk_level_for
from riskgate.geoip.lookup import GeoResult, lookup as geoip_lookup
from riskgate.intel.providers import ProviderVerdict, ReputationProvider
from riskgate.intel.reference import ReferenceData
from riskgate.storage.cache import Cache

logger = logging.getLogger("riskgate.intel.ip_reputation")

CACHE_PREFIX = "ip:analysis:"

VPN_POINTS = 30
PROXY_POINTS = 25
TOR_POINTS = 40
HOSTING_POINTS = 20


@dataclass
class IPAnalysis:
    """Reputation verdict for one address."""
    vpn_detected: bool = False
    proxy_detected: bool = False
    tor_detected: bool = False
    abuse_score: int = 0
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    asn: Optional[int] = None
    isp: Optional[str] = None
    risk_level: RiskLevel = RiskLevel.LOW
    reasons: list[str] = field(default_factory=list)

    def to_json(self) -> str:
        data = asdict(self)
        data["risk_level"] = self.risk_level.value
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "IPAnalysis":
        data = json.loads(raw)
        data["risk_level"] = RiskLevel(data["risk_level"])
        return cls(**data)


class IPReputationAggregator:
    """Scores client IPs; each stage is additive, the total is capped at 100."""

    def __init__(
        self,
        cache: Cache,
        reference: ReferenceData,
        providers: Sequence[ReputationProvider] = (),
        geo_lookup: Callable[[str], Optional[GeoResult]] = geoip_lookup,
        cache_ttl: int = 3600,
        timeout: float = 5.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.cache = cache
        self.reference = reference
        self.providers = list(providers)
        self._geo_lookup = geo_lookup
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self._http_client = http_client

    async def analyze_ip(self, ip: str) -> IPAnalysis:
        """Return the cached analysis for ``ip`` or compute and cache it."""
        cache_key = f"{CACHE_PREFIX}{ip}"
        try:
            cached = await self.cache.get(cache_key)
            if cached:
                return IPAnalysis.from_json(cached)
        except Exception:
            logger.warning("IP analysis cache read failed for %s", ip, exc_info=True)

        analysis = await self.compute(ip)

        try:
            await self.cache.set(cache_key, analysis.to_json(), ttl=self.cache_ttl)
        except Exception:
            logger.warning("Failed to cache IP analysis for %s", ip, exc_info=True)
        return analysis

    async def compute(self, ip: str) -> IPAnalysis:
        """Run the full pipeline without touching the cache."""
        analysis = IPAnalysis()
        score = 0

        # ── 1. Geolocation (informational) ───────────────
        geo: Optional[GeoResult] = None
        try:
            geo = self._geo_lookup(ip)
        except Exception:
            logger.warning("Geolocation failed for %s", ip, exc_info=True)
        if geo is not None:
            analysis.country = geo.country_code
            analysis.region = geo.region
            analysis.city = geo.city
            analysis.asn = geo.asn
            analysis.isp = geo.org

        # ── 2. VPN / proxy / Tor ─────────────────────────
        net = self.reference.classify(ip, asn=analysis.asn)
        if net.vpn:
            analysis.vpn_detected = True
            score += VPN_POINTS
            analysis.reasons.append("IP matches VPN provider")
        if net.proxy:
            analysis.proxy_detected = True
            score += PROXY_POINTS
            analysis.reasons.append("IP matches proxy service")
        if net.tor:
            analysis.tor_detected = True
            score += TOR_POINTS
            analysis.reasons.append("IP is Tor exit node")

        # ── 3. Hosting provider ──────────────────────────
        if net.hosting_provider:
            score += HOSTING_POINTS
            analysis.reasons.append(f"Hosting provider detected: {net.hosting_provider}")

        # ── 4. External providers ────────────────────────
        for verdict in await self._query_providers(ip):
            score += verdict.score
            analysis.reasons.extend(verdict.reasons)

        analysis.abuse_score = clamp_score(score)
        analysis.risk_level = risk_level_for(analysis.abuse_score)
        return analysis

    async def close(self) -> None:
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()

    # ── Internal ─────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
        return self._http_client

    async def _query_providers(self, ip: str) -> list[ProviderVerdict]:
        active = [p for p in self.providers if p.configured]
        if not active:
            return []

        client = self._client()
        results = await asyncio.gather(
            *(asyncio.wait_for(p.lookup(ip, client), self.timeout) for p in active),
            return_exceptions=True,
        )

        verdicts: list[ProviderVerdict] = []
        for provider, result in zip(active, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "Reputation provider %s failed for %s: %r", provider.name, ip, result,
                )
                continue
            verdicts.append(result)
        return verdicts
