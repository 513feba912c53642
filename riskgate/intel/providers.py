"""
Riskgate - External IP reputation providers.

Each provider turns a third-party lookup into weighted points plus
human-readable reasons. Providers without credentials are skipped.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx

logger = logging.getLogger("riskgate.intel.providers")


@dataclass
class ProviderVerdict:
    """Points and reasons contributed by a single provider."""
    score: int = 0
    reasons: list[str] = field(default_factory=list)

    def add(self, points: int, reason: str) -> None:
        self.score += points
        self.reasons.append(reason)


class ReputationProvider(ABC):
    """Base class for reputation providers."""

    name = "provider"

    @property
    @abstractmethod
    def configured(self) -> bool:
        ...

    @abstractmethod
    async def lookup(self, ip: str, client: httpx.AsyncClient) -> ProviderVerdict:
        """Query the provider; transport and HTTP errors propagate to the caller."""


class IPQualityScoreProvider(ReputationProvider):
    """IPQualityScore proxy / VPN / Tor / fraud score lookup."""

    name = "ipqualityscore"
    BASE_URL = "https://ipqualityscore.com/api/json/ip"

    def __init__(self, api_key: Optional[str] = None, fraud_threshold: int = 75) -> None:
        self.api_key = api_key
        self.fraud_threshold = fraud_threshold

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def lookup(self, ip: str, client: httpx.AsyncClient) -> ProviderVerdict:
        resp = await client.get(f"{self.BASE_URL}/{self.api_key}/{ip}")
        resp.raise_for_status()
        data = resp.json()

        verdict = ProviderVerdict()
        if not data.get("success"):
            logger.debug("IPQS returned unsuccessful response for %s", ip)
            return verdict
        if data.get("proxy"):
            verdict.add(25, "Proxy detected by IPQS")
        if data.get("vpn"):
            verdict.add(25, "VPN detected by IPQS")
        if data.get("tor"):
            verdict.add(30, "Tor detected by IPQS")
        fraud_score = data.get("fraud_score") or 0
        if fraud_score > self.fraud_threshold:
            verdict.add(20, f"High fraud score: {fraud_score}")
        return verdict


class IPInfoProvider(ReputationProvider):
    """ipinfo.io privacy detection lookup."""

    name = "ipinfo"
    BASE_URL = "https://ipinfo.io"

    def __init__(self, token: Optional[str] = None) -> None:
        self.token = token

    @property
    def configured(self) -> bool:
        return bool(self.token)

    async def lookup(self, ip: str, client: httpx.AsyncClient) -> ProviderVerdict:
        resp = await client.get(f"{self.BASE_URL}/{ip}", params={"token": self.token})
        resp.raise_for_status()
        privacy = resp.json().get("privacy") or {}

        verdict = ProviderVerdict()
        if privacy.get("vpn"):
            verdict.add(25, "VPN detected by IPInfo")
        if privacy.get("proxy"):
            verdict.add(25, "Proxy detected by IPInfo")
        if privacy.get("hosting"):
            verdict.add(15, "Hosting provider detected by IPInfo")
        return verdict
