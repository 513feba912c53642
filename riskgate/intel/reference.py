"""
Riskgate - Network reference data.

VPN, proxy, Tor and hosting-provider ranges used to classify client IPs.
Hosting ranges ship built in; deployments extend or replace any list via a
YAML file, and can pull the public Tor bulk exit list at startup.

Example YAML::

    vpn:
      - 198.51.100.0/24
    proxy:
      - 192.0.2.0/24
    tor:
      - 185.220.101.1
    hosting:
      - name: Example Cloud
        asns: [64500]
        cidrs: [203.0.113.0/24]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from ipaddress import IPv4Network, IPv6Network, ip_address, ip_network
from pathlib import Path
from typing import Any, Optional, Union

import httpx
import yaml

logger = logging.getLogger("riskgate.intel.reference")

Network = Union[IPv4Network, IPv6Network]


@dataclass
class HostingProvider:
    name: str
    asns: set[int] = field(default_factory=set)
    networks: list[Network] = field(default_factory=list)


@dataclass
class NetworkClass:
    """Independent classifications of one address."""
    vpn: bool = False
    proxy: bool = False
    tor: bool = False
    hosting_provider: Optional[str] = None


_BUILTIN_HOSTING: list[tuple[str, list[int], list[str]]] = [
    ("AWS", [16509, 14618], [
        "3.0.0.0/8", "13.32.0.0/12", "18.128.0.0/9", "52.0.0.0/10",
        "54.64.0.0/11", "99.77.0.0/16",
    ]),
    ("Google Cloud", [15169, 396982], [
        "34.64.0.0/10", "35.184.0.0/13", "104.154.0.0/15", "104.196.0.0/14",
    ]),
    ("Microsoft Azure", [8075], [
        "13.64.0.0/11", "20.0.0.0/8", "40.64.0.0/10", "52.224.0.0/11",
    ]),
    ("DigitalOcean", [14061], [
        "64.225.0.0/16", "68.183.0.0/16", "104.131.0.0/16", "134.209.0.0/16",
        "138.68.0.0/16", "139.59.0.0/16", "142.93.0.0/16", "157.245.0.0/16",
        "159.65.0.0/16", "159.89.0.0/16", "161.35.0.0/16", "164.90.0.0/16",
    ]),
    ("Linode", [63949], [
        "45.33.0.0/16", "45.56.0.0/16", "45.79.0.0/16", "50.116.0.0/16",
        "139.162.0.0/16", "172.104.0.0/15",
    ]),
    ("Vultr", [20473], [
        "45.32.0.0/16", "45.63.0.0/16", "45.76.0.0/16", "45.77.0.0/16",
        "108.61.0.0/16", "149.28.0.0/16",
    ]),
    ("Hetzner", [24940], [
        "5.9.0.0/16", "46.4.0.0/14", "78.46.0.0/15", "88.99.0.0/16",
        "95.216.0.0/14", "135.181.0.0/16", "136.243.0.0/16",
    ]),
    ("OVH", [16276], [
        "51.38.0.0/16", "51.68.0.0/16", "51.75.0.0/16", "51.77.0.0/16",
        "51.79.0.0/16", "51.81.0.0/16", "51.89.0.0/16", "51.91.0.0/16",
        "137.74.0.0/16", "139.99.0.0/16", "144.217.0.0/16", "149.56.0.0/16",
        "158.69.0.0/16", "167.114.0.0/16",
    ]),
]


class ReferenceData:
    """Classifies addresses against the loaded reference lists."""

    def __init__(
        self,
        vpn: Optional[list[Network]] = None,
        proxy: Optional[list[Network]] = None,
        tor: Optional[list[Network]] = None,
        hosting: Optional[list[HostingProvider]] = None,
    ) -> None:
        self.vpn = list(vpn or [])
        self.proxy = list(proxy or [])
        self.tor = list(tor or [])
        self.tor_exits: set[str] = set()
        self.hosting = list(hosting or [])

    @classmethod
    def builtin(cls) -> "ReferenceData":
        providers = [
            HostingProvider(name=name, asns=set(asns), networks=[ip_network(c) for c in cidrs])
            for name, asns, cidrs in _BUILTIN_HOSTING
        ]
        return cls(hosting=providers)

    def classify(self, ip: str, asn: Optional[int] = None) -> NetworkClass:
        """Classify an address; each flag is evaluated independently."""
        result = NetworkClass()
        try:
            addr = ip_address(ip)
        except ValueError:
            return result

        result.vpn = any(addr in net for net in self.vpn)
        result.proxy = any(addr in net for net in self.proxy)
        result.tor = str(addr) in self.tor_exits or any(addr in net for net in self.tor)

        for provider in self.hosting:
            if (asn is not None and asn in provider.asns) or any(
                addr in net for net in provider.networks
            ):
                result.hosting_provider = provider.name
                break
        return result

    def merge(self, data: dict[str, Any]) -> None:
        """Extend the lists from a parsed YAML document."""
        self.vpn.extend(_parse_networks(data.get("vpn", [])))
        self.proxy.extend(_parse_networks(data.get("proxy", [])))
        self.tor.extend(_parse_networks(data.get("tor", [])))
        for raw in data.get("hosting", []) or []:
            self.hosting.append(HostingProvider(
                name=raw.get("name", "unnamed"),
                asns={int(a) for a in raw.get("asns", []) or []},
                networks=_parse_networks(raw.get("cidrs", [])),
            ))

    async def refresh_tor_exits(self, client: httpx.AsyncClient, url: str) -> int:
        """
        Replace the exact-match Tor exit set from a bulk exit list
        (one address per line, ``#`` comments allowed).
        """
        resp = await client.get(url)
        resp.raise_for_status()
        exits: set[str] = set()
        for line in resp.text.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                exits.add(str(ip_address(line)))
            except ValueError:
                continue
        self.tor_exits = exits
        logger.info("Loaded %d Tor exit addresses from %s", len(exits), url)
        return len(exits)


def load_reference_data(path: Optional[str] = None) -> ReferenceData:
    """Built-in data, extended by the YAML file at ``path`` when given."""
    data = ReferenceData.builtin()
    if not path:
        return data

    file = Path(path)
    if not file.exists():
        logger.warning("Reference data file not found: %s", file)
        return data

    with open(file, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    data.merge(raw)
    logger.info(
        "Loaded reference data from %s (vpn=%d proxy=%d tor=%d hosting=%d)",
        file, len(data.vpn), len(data.proxy), len(data.tor), len(data.hosting),
    )
    return data


def _parse_networks(values: list[str] | None) -> list[Network]:
    networks: list[Network] = []
    for value in values or []:
        try:
            networks.append(ip_network(str(value), strict=False))
        except ValueError:
            logger.warning("Ignoring invalid network in reference data: %s", value)
    return networks
