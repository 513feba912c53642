"""
Tests for the GeoIP lookup module.
"""

import pytest

from riskgate.geoip import lookup as geo
from riskgate.geoip.lookup import GeoResult, _fallback_lookup, is_routable, lookup


@pytest.fixture
def dev_fallback(monkeypatch):
    monkeypatch.setattr(geo, "_dev_fallback", True)


def test_public_ip_unlocated_without_database():
    """Without a City DB, public addresses are not given an invented country."""
    assert lookup("8.8.8.8") is None
    assert lookup("2001:4860:4860::8888") is None


def test_dev_fallback_returns_result(dev_fallback):
    result = lookup("8.8.8.8")
    assert isinstance(result, GeoResult)
    assert result.country_code != ""
    assert result.country_name != ""


@pytest.mark.parametrize("ip", ["10.0.0.1", "192.168.1.1", "127.0.0.1", "::1", "not-an-ip", ""])
def test_unresolvable_addresses(ip, dev_fallback):
    """Private, loopback and malformed addresses have no location."""
    assert lookup(ip) is None
    assert not is_routable(ip)


def test_deterministic_mapping():
    """Same IP should always map to the same country."""
    r1 = _fallback_lookup("8.8.4.4")
    r2 = _fallback_lookup("8.8.4.4")
    assert r1.country_code == r2.country_code
    assert r1.latitude == r2.latitude


def test_different_ips_vary():
    """Different IPs should map to different countries (mostly)."""
    countries = {_fallback_lookup(f"81.{i}.10.1").country_code for i in range(50)}
    assert len(countries) > 5


def test_ipv6_dev_fallback(dev_fallback):
    result = lookup("2001:4860:4860::8888")
    assert isinstance(result, GeoResult)


def test_close_resets_dev_fallback(dev_fallback):
    geo.close()
    assert lookup("8.8.8.8") is None


def test_to_dict():
    r = GeoResult(country_code="US", country_name="United States", latitude=38.0, longitude=-97.0)
    d = r.to_dict()
    assert d["country_code"] == "US"
    assert d["asn"] is None
