"""
Riskgate - Behavioral Analysis Engine.

Scores a single request's client-side signals for automation:
  • User-Agent signatures and parse quality
  • Mouse trace presence and linearity
  • Keystroke timing uniformity
  • Request timing regularity
  • Challenge history of the fingerprint
  • Geolocation availability

Each signal group adds a bounded number of points; the total is clamped
to [0, 100] where 100 is clearly automated.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from riskgate.detection.fingerprint import is_weak_fingerprint
from riskgate.detection.risk import RiskLevel, clamp_score, risk_level_for
from riskgate.detection.useragent import analyze_user_agent
from riskgate.geoip.lookup import GeoResult, lookup as geoip_lookup

logger = logging.getLogger("riskgate.detection.behavior")

# Only the most recent events of each trace are analyzed
MAX_MOUSE_POINTS = 50
MAX_KEYSTROKES = 30

UA_MAX_POINTS = 25
MOUSE_NONE_POINTS = 20
MOUSE_MINIMAL_POINTS = 15
MOUSE_LINEAR_POINTS = 10
KEYSTROKE_NONE_POINTS = 10
KEYSTROKE_UNIFORM_POINTS = 15
TIMING_POINTS = 15
HISTORY_EXCESSIVE_POINTS = 15
HISTORY_HIGH_POINTS = 8
GEO_UNKNOWN_POINTS = 5
WEAK_FINGERPRINT_POINTS = 5

COLLINEAR_EPSILON = 1.0
LINEAR_TRIPLE_RATIO = 0.7
KEYSTROKE_VARIANCE_FLOOR = 100.0  # ms²
TIMING_STD_FLOOR = 10.0           # ms
TIMING_MIN_MEAN = 100.0           # ms


@dataclass
class MousePoint:
    x: float
    y: float
    timestamp: float


@dataclass
class Keystroke:
    key: str
    timestamp: float


@dataclass
class BotAnalysis:
    """Outcome of a behavioral analysis."""
    score: int
    risk_level: RiskLevel
    signals: list[str] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)


@dataclass
class _Tally:
    points: float = 0.0
    signals: list[str] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)

    def add(self, points: float, signal: str, reason: Optional[str] = None) -> None:
        self.points += points
        if signal not in self.signals:
            self.signals.append(signal)
        if reason:
            self.reasons.append(reason)


class BehaviorAnalyzer:
    """
    Produces a bot-likelihood score from one request's signals.

    Score semantics:
        0   = clearly human-like
        100 = clearly bot-like
    """

    def __init__(
        self,
        geo_lookup: Callable[[str], Optional[GeoResult]] = geoip_lookup,
    ) -> None:
        self._geo_lookup = geo_lookup

    def analyze(
        self,
        user_agent: str,
        fingerprint: str,
        ip_address: str,
        mouse_movements: Optional[Sequence[MousePoint]] = None,
        keystrokes: Optional[Sequence[Keystroke]] = None,
        request_timings: Optional[Sequence[float]] = None,
        previous_challenge_count: Optional[int] = None,
    ) -> BotAnalysis:
        """Score the request; ``None`` traces were not collected and add nothing."""
        tally = _Tally()
        groups: list[tuple[str, Callable[[], None]]] = [
            ("user_agent", lambda: self._user_agent(tally, user_agent)),
            ("mouse", lambda: self._mouse(tally, mouse_movements)),
            ("keystrokes", lambda: self._keystrokes(tally, keystrokes)),
            ("timing", lambda: self._timing(tally, request_timings)),
            ("history", lambda: self._history(tally, previous_challenge_count)),
            ("geolocation", lambda: self._geolocation(tally, ip_address)),
            ("fingerprint", lambda: self._fingerprint(tally, fingerprint)),
        ]
        for name, run in groups:
            try:
                run()
            except Exception:
                # A broken signal group costs accuracy, never availability
                logger.warning("Behavior signal '%s' failed", name, exc_info=True)

        score = clamp_score(tally.points)
        return BotAnalysis(
            score=score,
            risk_level=risk_level_for(score),
            signals=tally.signals,
            reasons=tally.reasons,
        )

    # ── Signal groups ────────────────────────────────────

    @staticmethod
    def _user_agent(tally: _Tally, user_agent: str) -> None:
        verdict = analyze_user_agent(user_agent)
        if verdict.is_bot:
            tally.add(
                UA_MAX_POINTS * verdict.confidence,
                "suspicious_ua",
                f"User agent: {verdict.kind}",
            )

    @staticmethod
    def _mouse(tally: _Tally, movements: Optional[Sequence[MousePoint]]) -> None:
        if movements is None:
            return
        points = list(movements)[-MAX_MOUSE_POINTS:]
        if not points:
            tally.add(MOUSE_NONE_POINTS, "no_mouse_movement", "No mouse movement detected")
            return
        if len(points) < 5:
            tally.add(MOUSE_MINIMAL_POINTS, "minimal_mouse_movement", "Minimal mouse activity")
            return
        if linear_ratio(points) > LINEAR_TRIPLE_RATIO:
            tally.add(MOUSE_LINEAR_POINTS, "linear_mouse_movement", "Mouse movements too linear")

    @staticmethod
    def _keystrokes(tally: _Tally, keystrokes: Optional[Sequence[Keystroke]]) -> None:
        if keystrokes is None:
            return
        events = list(keystrokes)[-MAX_KEYSTROKES:]
        if not events:
            tally.add(KEYSTROKE_NONE_POINTS, "no_keystrokes")
            return
        intervals = [b.timestamp - a.timestamp for a, b in zip(events, events[1:])]
        if intervals and _variance(intervals) < KEYSTROKE_VARIANCE_FLOOR:
            tally.add(
                KEYSTROKE_UNIFORM_POINTS, "uniform_keystrokes", "Keystroke timing too uniform",
            )

    @staticmethod
    def _timing(tally: _Tally, timings: Optional[Sequence[float]]) -> None:
        if not timings or len(timings) < 3:
            return
        suspicious, reason = analyze_timing(timings)
        if suspicious:
            tally.add(TIMING_POINTS, "suspicious_timing", reason)

    @staticmethod
    def _history(tally: _Tally, previous: Optional[int]) -> None:
        if previous is None:
            return
        if previous > 10:
            tally.add(HISTORY_EXCESSIVE_POINTS, "excessive_challenges", "Too many challenge attempts")
        elif previous > 5:
            tally.add(HISTORY_HIGH_POINTS, "high_challenge_count")

    def _geolocation(self, tally: _Tally, ip_address: str) -> None:
        if self._geo_lookup(ip_address) is None:
            tally.add(GEO_UNKNOWN_POINTS, "unknown_geolocation", "IP geolocation unavailable")

    @staticmethod
    def _fingerprint(tally: _Tally, fingerprint: str) -> None:
        if is_weak_fingerprint(fingerprint):
            tally.add(WEAK_FINGERPRINT_POINTS, "weak_fingerprint", "Fingerprint too simple")


# ── Helpers ──────────────────────────────────────────────


def linear_ratio(points: Sequence[MousePoint]) -> float:
    """
    Fraction of consecutive point triples that are (nearly) collinear.

    Uses the cross product of the two displacement vectors of each triple.
    """
    triples = len(points) - 2
    if triples <= 0:
        return 0.0
    collinear = 0
    for a, b, c in zip(points, points[1:], points[2:]):
        dx1, dy1 = b.x - a.x, b.y - a.y
        dx2, dy2 = c.x - b.x, c.y - b.y
        if abs(dx1 * dy2 - dy1 * dx2) < COLLINEAR_EPSILON:
            collinear += 1
    return collinear / triples


def analyze_timing(timings: Sequence[float]) -> tuple[bool, str]:
    """Flag request sequences that are too regular or too fast for a human."""
    if len(timings) < 3:
        return False, "Insufficient data"
    intervals = [b - a for a, b in zip(timings, timings[1:])]
    mean = sum(intervals) / len(intervals)
    std = math.sqrt(_variance(intervals))
    if std < TIMING_STD_FLOOR and len(intervals) > 5:
        return True, "Uniform timing pattern detected"
    if mean < TIMING_MIN_MEAN:
        return True, "Requests too fast for human"
    return False, "Normal timing pattern"


def _variance(values: Sequence[float]) -> float:
    mean = sum(values) / len(values)
    return sum((v - mean) ** 2 for v in values) / len(values)
