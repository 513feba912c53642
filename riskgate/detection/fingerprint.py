"""
Riskgate - Client Fingerprinting.

Derives a stable identifier from static client metadata so requests from
the same browser can be correlated across calls.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

SEPARATOR = "|"

# Client fingerprints shorter than this carry too little entropy to be real
MIN_CLIENT_FINGERPRINT_LENGTH = 32


@dataclass
class FingerprintSignals:
    """Everything the server knows about a client when fingerprinting it."""

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    accept_language: Optional[str] = None
    accept_encoding: Optional[str] = None
    screen_resolution: Optional[str] = None
    timezone: Optional[int] = None
    canvas: Optional[str] = None
    webgl: Optional[str] = None
    fonts: Optional[Sequence[str]] = None

    def components(self) -> list[str]:
        """Digest inputs in their fixed order; missing values are empty strings."""
        return [
            self.user_agent or "",
            self.accept_language or "",
            self.accept_encoding or "",
            self.screen_resolution or "",
            "" if self.timezone is None else str(self.timezone),
            self.canvas or "",
            self.webgl or "",
            ",".join(self.fonts) if self.fonts else "",
        ]


def _escape(component: str) -> str:
    return component.replace("\\", "\\\\").replace(SEPARATOR, "\\" + SEPARATOR)


def build_fingerprint(signals: FingerprintSignals) -> str:
    """SHA-256 hex digest of the escaped, separator-joined components."""
    joined = SEPARATOR.join(_escape(c) for c in signals.components())
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def signals_from_headers(headers: Mapping[str, str], ip_address: str) -> FingerprintSignals:
    """Build signals from request headers (keys are matched case-insensitively)."""
    lowered = {k.lower(): v for k, v in headers.items()}
    return FingerprintSignals(
        user_agent=lowered.get("user-agent"),
        ip_address=ip_address,
        accept_language=lowered.get("accept-language"),
        accept_encoding=lowered.get("accept-encoding"),
    )


def resolve_fingerprint(client_value: Optional[str], signals: FingerprintSignals) -> str:
    """
    Use a client-computed fingerprint verbatim when given, else derive one.

    A client value is advisory: it is only ever compared for consistency
    at verify time, never trusted to grant anything.
    """
    if client_value and client_value.strip():
        return client_value.strip()
    return build_fingerprint(signals)


def is_weak_fingerprint(fingerprint: str) -> bool:
    """Too short to be a real digest, likely spoofed."""
    return len(fingerprint) < MIN_CLIENT_FINGERPRINT_LENGTH
