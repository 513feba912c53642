"""
Riskgate - Built-in Traffic Simulator.

Drives the challenge API with synthetic widget clients for testing the
scoring pipeline. Supports: Human, Bot, Flood, Distributed, Mixed traffic.

Source IPs travel in X-Forwarded-For, so the target must list the
simulator host in RISKGATE_TRUSTED_PROXIES for them to take effect.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

logger = logging.getLogger("riskgate.simulator")

# Realistic browser user-agents for legitimate traffic simulation
_REAL_UAS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_3) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:122.0) Gecko/20100101 Firefox/122.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36 Edg/121.0.0.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_3 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1",
]

# Automation user-agents for bot simulation
_BOT_UAS = [
    "",
    "python-requests/2.31.0",
    "Go-http-client/1.1",
    "curl/7.88.1",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) HeadlessChrome/121.0.0.0 Safari/537.36",
]

_SCREENS = ["1920x1080", "2560x1440", "1440x900", "390x844"]


class Scenario(str, Enum):
    HUMAN = "human"
    BOT = "bot"
    FLOOD = "flood"
    DISTRIBUTED = "distributed"
    MIXED = "mixed"


@dataclass
class SimulatorConfig:
    """Configuration for a simulation run."""
    target_url: str = "http://localhost:8000"
    site_key: str = "sim-site-key"
    scenario: Scenario = Scenario.MIXED
    duration_sec: int = 30
    concurrency: int = 20
    rps: int = 50
    source_ips: int = 10  # simulated unique IPs (via X-Forwarded-For)


@dataclass
class SimulatorReport:
    """Results from a simulation run."""
    scenario: str
    duration_sec: float
    total_requests: int = 0
    passed: int = 0
    challenged: int = 0
    blocked: int = 0
    verified: int = 0
    errors: int = 0
    avg_latency_ms: float = 0.0
    unique_ips_used: int = 0

    @property
    def block_rate(self) -> float:
        return self.blocked / max(1, self.total_requests) * 100

    @property
    def challenge_rate(self) -> float:
        return self.challenged / max(1, self.total_requests) * 100

    def summary(self) -> str:
        return (
            f"\n{'='*55}\n"
            f"   Simulation Report: {self.scenario}\n"
            f"{'='*55}\n"
            f"  Duration:        {self.duration_sec:.1f}s\n"
            f"  Total Requests:  {self.total_requests}\n"
            f"  Passed:          {self.passed}\n"
            f"  Challenged:      {self.challenged}\n"
            f"  Blocked:         {self.blocked}\n"
            f"  Verified:        {self.verified}\n"
            f"  Errors:          {self.errors}\n"
            f"  Block Rate:      {self.block_rate:.1f}%\n"
            f"  Challenge Rate:  {self.challenge_rate:.1f}%\n"
            f"  Avg Latency:     {self.avg_latency_ms:.1f}ms\n"
            f"  Unique IPs:      {self.unique_ips_used}\n"
            f"{'='*55}\n"
        )


# ── Widget payloads ──────────────────────────────────────


def human_payload(site_key: str, rng: Optional[random.Random] = None) -> dict[str, Any]:
    """Curved mouse trace, jittered keystrokes, irregular request timings."""
    rng = rng or random.Random()
    t = time.time() * 1000
    mouse = []
    for i in range(30):
        t += rng.uniform(12, 40)
        mouse.append({
            "x": 100 + i * 12 + 40 * math.sin(i / 3) + rng.uniform(-3, 3),
            "y": 200 + 60 * math.cos(i / 4) + rng.uniform(-3, 3),
            "timestamp": t,
        })
    keystrokes = []
    for ch in "hello world":
        t += rng.uniform(60, 260)
        keystrokes.append({"key": ch, "timestamp": t})
    timings = []
    for _ in range(6):
        t += rng.uniform(400, 3000)
        timings.append(t)
    return {
        "siteKey": site_key,
        "action": "login",
        "mouseMovements": mouse,
        "keystrokes": keystrokes,
        "requestTimings": timings,
        "screenResolution": rng.choice(_SCREENS),
        "timezone": rng.choice([-480, -300, 0, 60, 120]),
    }


def bot_payload(site_key: str, rng: Optional[random.Random] = None) -> dict[str, Any]:
    """Straight-line or missing mouse trace, uniform keystrokes, tight timings."""
    rng = rng or random.Random()
    t = time.time() * 1000
    payload: dict[str, Any] = {"siteKey": site_key, "action": "login"}
    if rng.random() < 0.5:
        payload["mouseMovements"] = [
            {"x": 10 * i, "y": 5 * i, "timestamp": t + 10 * i} for i in range(20)
        ]
    payload["keystrokes"] = [
        {"key": ch, "timestamp": t + 50 * i} for i, ch in enumerate("password")
    ]
    payload["requestTimings"] = [t + 20 * i for i in range(8)]
    return payload


class TrafficSimulator:
    """Generates synthetic widget traffic against Riskgate."""

    def __init__(self, config: SimulatorConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        self.config = config
        self.report = SimulatorReport(
            scenario=config.scenario.value,
            duration_sec=config.duration_sec,
        )
        self._client = client
        self._latencies: list[float] = []
        self._ips_used: set[str] = set()
        self._rng = random.Random()

    def _random_ip(self, pool_size: int | None = None) -> str:
        """Generate a random simulated public IP."""
        n = pool_size or self.config.source_ips
        ip = f"203.0.{self._rng.randint(0, min(n, 255))}.{self._rng.randint(1, 254)}"
        self._ips_used.add(ip)
        return ip

    async def session(
        self, client: httpx.AsyncClient, ip: str, human: bool,
    ) -> Optional[int]:
        """One widget session: create a challenge and, when issued, verify it."""
        payload = (human_payload if human else bot_payload)(self.config.site_key, self._rng)
        headers = {
            "X-Forwarded-For": ip,
            "User-Agent": self._rng.choice(_REAL_UAS if human else _BOT_UAS),
        }
        if human:
            headers["Accept-Language"] = "en-US,en;q=0.9"
            headers["Accept-Encoding"] = "gzip, deflate, br"

        start = time.monotonic()
        try:
            resp = await client.post(
                f"{self.config.target_url}/api/v1/challenge/create",
                json=payload, headers=headers,
            )
        except httpx.HTTPError:
            self.report.errors += 1
            self.report.total_requests += 1
            return None
        self._latencies.append((time.monotonic() - start) * 1000)
        self.report.total_requests += 1

        if resp.status_code == 403:
            self.report.blocked += 1
            return resp.status_code
        if resp.status_code != 200:
            self.report.errors += 1
            return resp.status_code

        data = resp.json()
        if data.get("requiresInteraction"):
            self.report.challenged += 1
            # Bots give up on interactive challenges
            if not human:
                return resp.status_code
        else:
            self.report.passed += 1

        try:
            verify = await client.post(
                f"{self.config.target_url}/api/v1/challenge/verify",
                json={"token": data["token"]}, headers=headers,
            )
        except httpx.HTTPError:
            self.report.errors += 1
            return resp.status_code
        if verify.status_code == 200:
            self.report.verified += 1
        return resp.status_code

    async def run(self) -> SimulatorReport:
        """Run the selected scenario."""
        logger.info(
            "Starting %s simulation (%ds, %d RPS, %d concurrent)",
            self.config.scenario.value,
            self.config.duration_sec,
            self.config.rps,
            self.config.concurrency,
        )
        runners = {
            Scenario.HUMAN: lambda c: self._stream(c, human_ratio=1.0),
            Scenario.BOT: lambda c: self._stream(c, human_ratio=0.0),
            Scenario.FLOOD: lambda c: self._stream(c, human_ratio=0.0, pool_size=1),
            Scenario.DISTRIBUTED: lambda c: self._stream(
                c, human_ratio=0.4, pool_size=max(500, self.config.source_ips * 50),
            ),
            Scenario.MIXED: lambda c: self._stream(c, human_ratio=0.3),
        }
        runner = runners[self.config.scenario]

        if self._client is not None:
            await runner(self._client)
        else:
            async with httpx.AsyncClient(timeout=10) as client:
                await runner(client)

        if self._latencies:
            self.report.avg_latency_ms = sum(self._latencies) / len(self._latencies)
        self.report.unique_ips_used = len(self._ips_used)
        return self.report

    async def _stream(
        self,
        client: httpx.AsyncClient,
        human_ratio: float,
        pool_size: int | None = None,
    ) -> None:
        end_time = time.time() + self.config.duration_sec
        sem = asyncio.Semaphore(self.config.concurrency)

        async def send():
            async with sem:
                if time.time() > end_time:
                    return
                human = self._rng.random() < human_ratio
                await self.session(client, self._random_ip(pool_size), human)

        while time.time() < end_time:
            tasks = [asyncio.create_task(send()) for _ in range(self.config.rps)]
            await asyncio.gather(*tasks)
            await asyncio.sleep(1)


async def run_simulation(
    scenario: str = "mixed",
    target: str = "http://localhost:8000",
    site_key: str = "sim-site-key",
    duration: int = 30,
    rps: int = 50,
    concurrency: int = 20,
    source_ips: int = 10,
) -> SimulatorReport:
    """Convenience function to run a simulation."""
    config = SimulatorConfig(
        target_url=target,
        site_key=site_key,
        scenario=Scenario(scenario),
        duration_sec=duration,
        rps=rps,
        concurrency=concurrency,
        source_ips=source_ips,
    )
    report = await TrafficSimulator(config).run()
    print(report.summary())
    return report


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="Riskgate Traffic Simulator")
    parser.add_argument("scenario", nargs="?", default="mixed",
                        choices=[s.value for s in Scenario])
    parser.add_argument("--target", default="http://localhost:8000")
    parser.add_argument("--site-key", default="sim-site-key")
    parser.add_argument("--duration", type=int, default=30)
    parser.add_argument("--rps", type=int, default=50)
    parser.add_argument("--concurrency", type=int, default=20)
    parser.add_argument("--source-ips", type=int, default=10)
    args = parser.parse_args()

    asyncio.run(run_simulation(
        scenario=args.scenario,
        target=args.target,
        site_key=args.site_key,
        duration=args.duration,
        rps=args.rps,
        concurrency=args.concurrency,
        source_ips=args.source_ips,
    ))
