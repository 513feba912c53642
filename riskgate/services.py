"""
Riskgate - Service wiring.

Builds the scoring pipeline from settings. Every component receives its
collaborators explicitly, so tests can assemble the same graph around an
in-process cache and a throwaway database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from riskgate.geoip import lookup as geo
from riskgate.config import Settings
from riskgate.detection.behavior import BehaviorAnalyzer
from riskgate.geoip.lookup import GeoResult
from riskgate.intel.ip_reputation import IPReputationAggregator
from riskgate.intel.providers import IPInfoProvider, IPQualityScoreProvider
from riskgate.intel.reference import ReferenceData, load_reference_data
from riskgate.mitigation.abuse import AbuseDetector
from riskgate.mitigation.blocker import Blacklist
from riskgate.mitigation.challenge import ChallengeManager
from riskgate.mitigation.rate_limiter import RateLimiter
from riskgate.mitigation.sweeper import Sweeper
from riskgate.sitekeys import SiteKeyValidator, StaticSiteKeyValidator
from riskgate.storage.cache import Cache, CacheManager
from riskgate.storage.database import Database

logger = logging.getLogger("riskgate.services")


@dataclass
class Services:
    """The assembled pipeline."""
    settings: Settings
    cache_manager: CacheManager
    database: Database
    reference: ReferenceData
    rate_limiter: RateLimiter
    blacklist: Blacklist
    abuse: AbuseDetector
    behavior: BehaviorAnalyzer
    ip_reputation: IPReputationAggregator
    challenges: ChallengeManager
    sweeper: Sweeper

    @property
    def cache(self) -> Cache:
        return self.cache_manager.cache

    async def startup(self) -> None:
        """Connect stores, load reference data and start background work."""
        cache = await self.cache_manager.connect()
        self._bind_cache(cache)
        await self.database.init()

        geoip_ok = geo.init_geoip(
            self.settings.geoip_db_path,
            self.settings.geoip_asn_db_path,
            dev_fallback=self.settings.geoip_dev_fallback,
        )
        logger.info("GeoIP: %s", "MaxMind DB loaded" if geoip_ok else "no City DB")

        if self.settings.tor_exit_list_url:
            try:
                async with httpx.AsyncClient(timeout=self.settings.reputation_timeout) as client:
                    await self.reference.refresh_tor_exits(client, self.settings.tor_exit_list_url)
            except Exception:
                logger.warning("Tor exit list unavailable", exc_info=True)

        await self.sweeper.start()

    async def shutdown(self) -> None:
        await self.sweeper.stop()
        await self.ip_reputation.close()
        await self.cache_manager.disconnect()
        await self.database.dispose()
        geo.close()

    def _bind_cache(self, cache: Cache) -> None:
        # connect() may have swapped the backend; rebind every holder
        self.rate_limiter.cache = cache
        self.blacklist.cache = cache
        self.ip_reputation.cache = cache


def build_services(
    settings: Settings,
    database: Optional[Database] = None,
    cache_manager: Optional[CacheManager] = None,
    site_keys: Optional[SiteKeyValidator] = None,
    geo_lookup: Optional[Callable[[str], Optional[GeoResult]]] = None,
    reference: Optional[ReferenceData] = None,
) -> Services:
    """Assemble the pipeline; any collaborator can be overridden."""
    cache_manager = cache_manager or CacheManager(settings.redis_url)
    database = database or Database(settings.database_url)
    geo_lookup = geo_lookup or geo.lookup
    reference = reference or load_reference_data(settings.reference_data_path)
    cache = cache_manager.cache

    rate_limiter = RateLimiter(cache)
    blacklist = Blacklist(cache, database)
    abuse = AbuseDetector(rate_limiter, blacklist, database, settings)
    behavior = BehaviorAnalyzer(geo_lookup=geo_lookup)
    ip_reputation = IPReputationAggregator(
        cache=cache,
        reference=reference,
        providers=[
            IPQualityScoreProvider(
                settings.ipqualityscore_api_key, settings.fraud_score_threshold,
            ),
            IPInfoProvider(settings.ipinfo_token),
        ],
        geo_lookup=geo_lookup,
        cache_ttl=settings.ip_cache_ttl,
        timeout=settings.reputation_timeout,
    )
    challenges = ChallengeManager(
        database=database,
        behavior=behavior,
        ip_reputation=ip_reputation,
        abuse=abuse,
        blacklist=blacklist,
        site_keys=site_keys or StaticSiteKeyValidator(settings.site_keys),
        settings=settings,
    )
    return Services(
        settings=settings,
        cache_manager=cache_manager,
        database=database,
        reference=reference,
        rate_limiter=rate_limiter,
        blacklist=blacklist,
        abuse=abuse,
        behavior=behavior,
        ip_reputation=ip_reputation,
        challenges=challenges,
        sweeper=Sweeper(challenges, settings.sweep_interval_seconds),
    )
