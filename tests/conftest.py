"""
Shared fixtures: a throwaway SQLite database and an in-process pipeline.
"""

from typing import Optional

import pytest

from riskgate.config import Settings
from riskgate.geoip.lookup import GeoResult
from riskgate.intel.reference import ReferenceData
from riskgate.services import Services, build_services
from riskgate.storage.cache import CacheManager
from riskgate.storage.database import Database

HUMAN_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)


def fixed_geo(ip: str) -> Optional[GeoResult]:
    """Every address resolves, so geolocation never adds points."""
    return GeoResult(country_code="US", country_name="United States", city="Austin", region="Texas")


@pytest.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'riskgate.db'}")
    await db.init()
    yield db
    await db.dispose()


@pytest.fixture
def settings(tmp_path) -> Settings:
    # httpx ASGITransport reports 127.0.0.1 as the peer
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'riskgate.db'}",
        trusted_proxies=["127.0.0.1"],
    )


@pytest.fixture
def make_services(database):
    """Build the pipeline around the test database, with overridable settings."""

    def _make(settings: Settings, **overrides) -> Services:
        return build_services(
            settings,
            database=database,
            cache_manager=CacheManager(None),
            geo_lookup=overrides.pop("geo_lookup", fixed_geo),
            reference=overrides.pop("reference", ReferenceData.builtin()),
            **overrides,
        )

    return _make


@pytest.fixture
def services(make_services, settings) -> Services:
    return make_services(settings)
