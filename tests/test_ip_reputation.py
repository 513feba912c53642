"""
Tests for the IP reputation aggregator, reference data and providers.
"""

from ipaddress import ip_network
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from riskgate.detection.risk import RiskLevel
from riskgate.geoip.lookup import GeoResult
from riskgate.intel.ip_reputation import CACHE_PREFIX, IPAnalysis, IPReputationAggregator
from riskgate.intel.providers import (
    IPQualityScoreProvider,
    ProviderVerdict,
    ReputationProvider,
)
from riskgate.intel.reference import ReferenceData, load_reference_data
from riskgate.storage.cache import MemoryCache

from tests.conftest import fixed_geo


class StaticProvider(ReputationProvider):
    name = "static"

    def __init__(self, verdict=None, error=None) -> None:
        self.verdict = verdict
        self.error = error
        self.calls = 0

    @property
    def configured(self) -> bool:
        return True

    async def lookup(self, ip, client):
        self.calls += 1
        if self.error:
            raise self.error
        return self.verdict


@pytest.fixture
def reference():
    ref = ReferenceData.builtin()
    ref.vpn.append(ip_network("198.51.100.0/24"))
    ref.proxy.append(ip_network("192.0.2.0/24"))
    return ref


@pytest.fixture
async def make_aggregator(reference):
    created = []

    def _make(providers=(), geo_lookup=fixed_geo, cache=None):
        agg = IPReputationAggregator(
            cache=cache if cache is not None else MemoryCache(),
            reference=reference,
            providers=providers,
            geo_lookup=geo_lookup,
        )
        created.append(agg)
        return agg

    yield _make
    for agg in created:
        await agg.close()


@pytest.mark.asyncio
async def test_clean_ip(make_aggregator):
    result = await make_aggregator().analyze_ip("8.8.8.8")
    assert result.abuse_score == 0
    assert result.risk_level == RiskLevel.LOW
    assert result.country == "US"
    assert not (result.vpn_detected or result.proxy_detected or result.tor_detected)


@pytest.mark.asyncio
async def test_tor_exit(make_aggregator, reference):
    reference.tor_exits.add("185.220.101.1")
    result = await make_aggregator().analyze_ip("185.220.101.1")
    assert result.tor_detected
    assert result.abuse_score == 40
    assert result.risk_level == RiskLevel.MEDIUM


@pytest.mark.asyncio
async def test_vpn_and_proxy(make_aggregator):
    vpn = await make_aggregator().analyze_ip("198.51.100.7")
    assert vpn.vpn_detected and vpn.abuse_score == 30
    proxy = await make_aggregator().analyze_ip("192.0.2.7")
    assert proxy.proxy_detected and proxy.abuse_score == 25


@pytest.mark.asyncio
async def test_hosting_by_asn(make_aggregator):
    def aws_geo(ip):
        return GeoResult(country_code="US", country_name="United States", asn=16509, org="AMAZON-02")

    result = await make_aggregator(geo_lookup=aws_geo).analyze_ip("8.8.8.8")
    assert result.abuse_score == 20
    assert result.isp == "AMAZON-02"
    assert any("AWS" in r for r in result.reasons)


@pytest.mark.asyncio
async def test_hosting_by_cidr(make_aggregator):
    result = await make_aggregator().analyze_ip("159.65.1.1")
    assert result.abuse_score == 20
    assert any("DigitalOcean" in r for r in result.reasons)


@pytest.mark.asyncio
async def test_score_is_clamped(make_aggregator, reference):
    reference.vpn.append(ip_network("45.76.0.0/16"))
    reference.proxy.append(ip_network("45.76.0.0/16"))
    reference.tor_exits.add("45.76.1.1")
    result = await make_aggregator().analyze_ip("45.76.1.1")
    assert result.abuse_score == 100
    assert result.risk_level == RiskLevel.CRITICAL


@pytest.mark.asyncio
async def test_provider_points_are_added(make_aggregator):
    verdict = ProviderVerdict()
    verdict.add(25, "VPN detected by test")
    result = await make_aggregator(providers=[StaticProvider(verdict)]).analyze_ip("8.8.8.8")
    assert result.abuse_score == 25
    assert "VPN detected by test" in result.reasons


@pytest.mark.asyncio
async def test_failing_provider_is_excluded(make_aggregator):
    verdict = ProviderVerdict(score=15, reasons=["ok"])
    providers = [
        StaticProvider(error=httpx.ConnectError("unreachable")),
        StaticProvider(verdict),
    ]
    result = await make_aggregator(providers=providers).analyze_ip("8.8.8.8")
    assert result.abuse_score == 15


@pytest.mark.asyncio
async def test_cache_hit_returned_verbatim(make_aggregator):
    cache = MemoryCache()
    cached = IPAnalysis(vpn_detected=True, abuse_score=77, risk_level=RiskLevel.CRITICAL, reasons=["x"])
    await cache.set(f"{CACHE_PREFIX}8.8.8.8", cached.to_json())
    provider = StaticProvider(ProviderVerdict())

    result = await make_aggregator(providers=[provider], cache=cache).analyze_ip("8.8.8.8")
    assert result == cached
    assert provider.calls == 0


@pytest.mark.asyncio
async def test_result_is_cached(make_aggregator):
    provider = StaticProvider(ProviderVerdict())
    agg = make_aggregator(providers=[provider])
    first = await agg.analyze_ip("8.8.8.8")
    second = await agg.analyze_ip("8.8.8.8")
    assert first == second
    assert provider.calls == 1


@pytest.mark.asyncio
async def test_cache_failure_still_computes(make_aggregator):
    cache = MagicMock()
    cache.get = AsyncMock(side_effect=RuntimeError("down"))
    cache.set = AsyncMock(side_effect=RuntimeError("down"))
    result = await make_aggregator(cache=cache).analyze_ip("8.8.8.8")
    assert result.abuse_score == 0


@pytest.mark.asyncio
async def test_ipqs_provider_scoring():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={
            "success": True, "proxy": True, "vpn": False, "tor": True, "fraud_score": 90,
        })

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        verdict = await IPQualityScoreProvider("key", 75).lookup("8.8.8.8", client)
    assert verdict.score == 25 + 30 + 20
    assert IPQualityScoreProvider(None).configured is False


@pytest.mark.asyncio
async def test_tor_exit_refresh():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="# exits\n185.220.101.1\n\nnot-an-ip\n2a0b:f4c2::1\n")

    ref = ReferenceData()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        count = await ref.refresh_tor_exits(client, "https://example.test/exits")
    assert count == 2
    assert ref.classify("185.220.101.1").tor


def test_load_reference_yaml(tmp_path):
    path = tmp_path / "reference.yaml"
    path.write_text(
        "vpn:\n  - 198.51.100.0/24\n"
        "hosting:\n  - name: Example Cloud\n    asns: [64500]\n    cidrs: [203.0.113.0/24]\n"
    )
    ref = load_reference_data(str(path))
    assert ref.classify("198.51.100.5").vpn
    assert ref.classify("203.0.113.9").hosting_provider == "Example Cloud"
    assert ref.classify("8.8.8.8", asn=64500).hosting_provider == "Example Cloud"
    # Built-in ranges are kept
    assert ref.classify("159.65.1.1").hosting_provider == "DigitalOcean"


def test_missing_reference_file_falls_back_to_builtin(tmp_path):
    ref = load_reference_data(str(tmp_path / "missing.yaml"))
    assert ref.classify("159.65.1.1").hosting_provider == "DigitalOcean"
