"""
Riskgate - User-Agent parsing.

Lightweight regex parser: enough to tell browser / OS families and the
browser major version apart, and to spot automation signatures.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

# Automation signatures (tool names, headless markers, generic HTTP clients)
BOT_UA_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"bot", r"crawl", r"spider", r"scrape", r"curl", r"wget",
        r"python", r"java", r"php", r"ruby", r"go-http",
        r"headless", r"phantom", r"selenium", r"puppeteer",
        r"playwright", r"webdriver", r"httpclient", r"okhttp",
        r"axios", r"node-fetch", r"libwww", r"httpie",
    )
]

_BROWSERS = [
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/(\d+)")),
    ("Opera", re.compile(r"(?:OPR|Opera)/(\d+)")),
    ("Samsung Internet", re.compile(r"SamsungBrowser/(\d+)")),
    ("Chrome", re.compile(r"(?:Chrome|CriOS)/(\d+)")),
    ("Firefox", re.compile(r"(?:Firefox|FxiOS)/(\d+)")),
    ("Safari", re.compile(r"Version/(\d+)(?:\.\d+)*.*Safari/")),
    ("IE", re.compile(r"(?:MSIE |Trident/.*rv:)(\d+)")),
]

_OPERATING_SYSTEMS = [
    ("Android", re.compile(r"Android")),
    ("iOS", re.compile(r"iPhone|iPad|iPod")),
    ("Windows", re.compile(r"Windows")),
    ("macOS", re.compile(r"Mac OS X|Macintosh")),
    ("ChromeOS", re.compile(r"CrOS")),
    ("Linux", re.compile(r"Linux|X11")),
]

SIGNATURE_CONFIDENCE = 0.9
INCOMPLETE_CONFIDENCE = 0.7
OUTDATED_CONFIDENCE = 0.6
OUTDATED_MAJOR_VERSION = 50


@dataclass
class UserAgentInfo:
    browser: Optional[str] = None
    browser_version: Optional[int] = None
    os: Optional[str] = None
    is_mobile: bool = False
    bot_token: Optional[str] = None


@dataclass
class UserAgentVerdict:
    is_bot: bool
    confidence: float
    kind: str = ""


def parse_user_agent(ua: str) -> UserAgentInfo:
    """Parse browser / OS family and look for an automation token."""
    info = UserAgentInfo()
    if not ua:
        return info

    for pattern in BOT_UA_PATTERNS:
        match = pattern.search(ua)
        if match:
            info.bot_token = match.group(0)
            break

    for name, pattern in _BROWSERS:
        match = pattern.search(ua)
        if match:
            info.browser = name
            info.browser_version = int(match.group(1))
            break

    for name, pattern in _OPERATING_SYSTEMS:
        if pattern.search(ua):
            info.os = name
            break

    info.is_mobile = "Mobile" in ua or info.os in ("Android", "iOS")
    return info


def analyze_user_agent(ua: str) -> UserAgentVerdict:
    """
    Grade a user agent for automation.

    Confidences from independent findings combine by maximum, so a headless
    browser with an incomplete UA is not counted twice.
    """
    info = parse_user_agent(ua or "")
    is_bot = False
    confidence = 0.0
    kind = ""

    if info.bot_token:
        is_bot = True
        confidence = SIGNATURE_CONFIDENCE
        kind = "Known bot signature"

    if not info.browser or not info.os:
        is_bot = True
        confidence = max(confidence, INCOMPLETE_CONFIDENCE)
        kind = kind or "Incomplete user agent"

    if info.browser_version is not None and info.browser_version < OUTDATED_MAJOR_VERSION:
        confidence = max(confidence, OUTDATED_CONFIDENCE)
        if not is_bot:
            is_bot = True
            kind = "Outdated browser version"

    return UserAgentVerdict(is_bot=is_bot, confidence=confidence, kind=kind)
