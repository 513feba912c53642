"""
Riskgate - Shared risk taxonomy.

The behavioral analyzer and the IP reputation aggregator both grade their
0–100 scores with ``risk_level_for`` so the two stay comparable when they
are combined into a challenge score.
"""

from __future__ import annotations

import math
from enum import Enum


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _ORDER.index(self)


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


def clamp_score(value: float) -> int:
    """Round half-up and clamp a score into [0, 100]."""
    return int(min(100, max(0, math.floor(value + 0.5))))


def risk_level_for(score: float) -> RiskLevel:
    """Grade a 0–100 risk score."""
    if score >= 75:
        return RiskLevel.CRITICAL
    if score >= 50:
        return RiskLevel.HIGH
    if score >= 25:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def max_level(*levels: RiskLevel) -> RiskLevel:
    """Return the most severe of the given levels."""
    return max(levels, key=lambda level: level.rank)
