"""
Riskgate - Configuration via Pydantic Settings.

All settings are loaded from environment variables or .env file.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings loaded from env / .env."""

    # ── General ──────────────────────────────────────────────
    app_name: str = "Riskgate"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"
    trusted_proxies: list[str] = Field(
        default_factory=list,
        description="Peers (addresses or CIDRs) whose X-Forwarded-For header is honored",
    )

    # ── Storage ──────────────────────────────────────────────
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for counters and caches (unset = in-process cache)",
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./riskgate.db",
        description="SQLAlchemy async URL for challenges, blacklist and abuse logs",
    )

    # ── Challenge lifecycle ──────────────────────────────────
    challenge_ttl_seconds: int = Field(
        default=300, description="Seconds a challenge token stays verifiable",
    )
    interaction_threshold: int = Field(
        default=30, description="Overall risk above which interaction is required",
    )
    bot_score_weight: float = 0.6
    abuse_score_weight: float = 0.4
    fingerprint_mismatch_penalty: int = 20
    strict_fingerprint_binding: bool = Field(
        default=False,
        description="Reject verification on fingerprint mismatch instead of downgrading",
    )
    sweep_interval_seconds: int = Field(
        default=300, description="Cadence of the expired-challenge sweep",
    )

    # ── Abuse detection ──────────────────────────────────────
    ip_rate_limit: int = 30
    ip_rate_window: int = 60
    fingerprint_rate_limit: int = 20
    fingerprint_rate_window: int = 60
    violation_window: int = 300
    violation_threshold: int = 5
    violation_block_seconds: int = 3600
    attack_window: int = 10
    attack_threshold: int = 100
    abuse_history_window: int = 3600
    abuse_history_threshold: int = 10
    abuse_block_seconds: int = 7200

    # ── IP reputation ────────────────────────────────────────
    ip_cache_ttl: int = Field(
        default=3600, description="Seconds an IP analysis stays cached",
    )
    geoip_db_path: Optional[str] = Field(
        default=None, description="Path to MaxMind GeoLite2 City database",
    )
    geoip_asn_db_path: Optional[str] = Field(
        default=None, description="Path to MaxMind GeoLite2 ASN database",
    )
    geoip_dev_fallback: bool = Field(
        default=False,
        description="Map public IPs to a deterministic fake country when no City DB is loaded (dev only)",
    )
    reference_data_path: Optional[str] = Field(
        default=None, description="YAML file with VPN / proxy / Tor / hosting ranges",
    )
    tor_exit_list_url: Optional[str] = Field(
        default=None, description="Bulk Tor exit list fetched at startup",
    )
    ipqualityscore_api_key: Optional[str] = None
    ipinfo_token: Optional[str] = None
    reputation_timeout: float = Field(
        default=5.0, description="Timeout in seconds for external reputation lookups",
    )
    fraud_score_threshold: int = 75

    # ── Site keys ────────────────────────────────────────────
    site_keys: Optional[list[str]] = Field(
        default=None, description="Allow-list of active site keys (unset = any)",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"debug", "info", "warning", "error", "critical"}
        if v.lower() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.lower()

    @field_validator("bot_score_weight", "abuse_score_weight")
    @classmethod
    def validate_weight(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("score weights must be within [0, 1]")
        return v

    model_config = {
        "env_prefix": "RISKGATE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton
settings = Settings()
