"""
Riskgate - GeoIP Lookup.

Provides geographic and network information for IPs using either:
  - MaxMind GeoLite2 City / ASN databases (RISKGATE_GEOIP_DB_PATH,
    RISKGATE_GEOIP_ASN_DB_PATH)
  - Opt-in deterministic fallback for development (RISKGATE_GEOIP_DEV_FALLBACK)

Without a City database, and for private, loopback, reserved and malformed
addresses, ``lookup`` yields ``None``; the behavioral analyzer treats that as
a weak bot signal.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import asdict, dataclass
from ipaddress import ip_address
from typing import Optional

logger = logging.getLogger("riskgate.geoip")

_city_reader = None  # MaxMind City reader (lazy-loaded)
_asn_reader = None   # MaxMind ASN reader (lazy-loaded)
_dev_fallback = False  # fake countries for local runs only


@dataclass
class GeoResult:
    """Geographic location result."""
    country_code: str  # ISO 3166-1 alpha-2, e.g. "US"
    country_name: str
    city: Optional[str] = None
    region: Optional[str] = None
    latitude: float = 0.0
    longitude: float = 0.0
    asn: Optional[int] = None
    org: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def init_geoip(
    db_path: str | None = None,
    asn_db_path: str | None = None,
    dev_fallback: bool = False,
) -> bool:
    """
    Initialize GeoIP databases.
    Returns True if the MaxMind City DB is available.
    """
    global _city_reader, _asn_reader, _dev_fallback
    _dev_fallback = dev_fallback
    import geoip2.database  # type: ignore[import-untyped]

    if asn_db_path:
        try:
            _asn_reader = geoip2.database.Reader(asn_db_path)
            logger.info("GeoIP ASN database loaded: %s", asn_db_path)
        except Exception:
            logger.warning("Failed to load ASN database from %s", asn_db_path, exc_info=True)

    if not db_path:
        logger.info(
            "No GeoIP DB path configured - %s",
            "using dev fallback mapping" if dev_fallback else "public IPs stay unlocated",
        )
        return False
    try:
        _city_reader = geoip2.database.Reader(db_path)
        logger.info("GeoIP database loaded: %s", db_path)
        return True
    except Exception:
        logger.warning("Failed to load GeoIP database from %s", db_path, exc_info=True)
        return False


def is_routable(ip: str) -> bool:
    """True for syntactically valid, globally routable addresses."""
    try:
        return ip_address(ip).is_global
    except ValueError:
        return False


def lookup(ip: str) -> Optional[GeoResult]:
    """Look up geographic info for an IP address, ``None`` when unresolvable."""
    if not is_routable(ip):
        return None

    result: Optional[GeoResult] = None
    if _city_reader is not None:
        try:
            result = _maxmind_lookup(ip)
        except Exception:
            logger.debug("MaxMind lookup failed for %s", ip, exc_info=True)
            return None
    elif _dev_fallback:
        result = _fallback_lookup(ip)
    else:
        return None

    if _asn_reader is not None:
        try:
            asn = _asn_reader.asn(ip)
            result.asn = asn.autonomous_system_number
            result.org = asn.autonomous_system_organization
        except Exception:
            logger.debug("ASN lookup failed for %s", ip, exc_info=True)
    return result


def _maxmind_lookup(ip: str) -> GeoResult:
    """Query MaxMind GeoLite2 City database."""
    resp = _city_reader.city(ip)  # type: ignore[union-attr]
    return GeoResult(
        country_code=resp.country.iso_code or "XX",
        country_name=resp.country.name or "Unknown",
        city=resp.city.name,
        region=resp.subdivisions.most_specific.name,
        latitude=float(resp.location.latitude or 0),
        longitude=float(resp.location.longitude or 0),
    )


# ── Dev fallback: deterministic mapping based on IP bytes ─

_COUNTRIES = [
    ("US", "United States", 38.0, -97.0),
    ("CN", "China", 35.0, 105.0),
    ("RU", "Russia", 55.75, 37.62),
    ("DE", "Germany", 52.52, 13.41),
    ("BR", "Brazil", -15.78, -47.93),
    ("IN", "India", 28.61, 77.21),
    ("JP", "Japan", 35.68, 139.69),
    ("GB", "United Kingdom", 51.51, -0.13),
    ("FR", "France", 48.86, 2.35),
    ("KR", "South Korea", 37.57, 126.98),
    ("AU", "Australia", -33.87, 151.21),
    ("NL", "Netherlands", 52.37, 4.90),
    ("CA", "Canada", 45.42, -75.69),
    ("UA", "Ukraine", 50.45, 30.52),
    ("PL", "Poland", 52.23, 21.01),
    ("ID", "Indonesia", -6.21, 106.85),
    ("TR", "Turkey", 39.93, 32.86),
    ("VN", "Vietnam", 21.03, 105.85),
    ("SG", "Singapore", 1.35, 103.82),
    ("ZA", "South Africa", -33.92, 18.42),
]


def _fallback_lookup(ip: str) -> GeoResult:
    """
    Deterministic IP-to-country mapping for local development.
    Uses the address bytes to pick a country consistently across processes.
    """
    packed = ip_address(ip).packed
    if len(packed) == 4:
        idx = (packed[0] * 7 + packed[1] * 3 + packed[2]) % len(_COUNTRIES)
    else:
        idx = int.from_bytes(hashlib.sha256(packed).digest()[:4], "big") % len(_COUNTRIES)

    code, name, lat, lon = _COUNTRIES[idx]
    return GeoResult(country_code=code, country_name=name, latitude=lat, longitude=lon)


def close() -> None:
    """Close the GeoIP database readers."""
    global _city_reader, _asn_reader, _dev_fallback
    for reader in (_city_reader, _asn_reader):
        if reader is not None:
            try:
                reader.close()
            except Exception:
                logger.debug("Error closing GeoIP reader", exc_info=True)
    _city_reader = None
    _asn_reader = None
    _dev_fallback = False
