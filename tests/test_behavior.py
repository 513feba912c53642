"""
Tests for the behavioral analysis engine.
"""

import math

import pytest

from riskgate.detection.behavior import (
    BehaviorAnalyzer,
    Keystroke,
    MousePoint,
    analyze_timing,
    linear_ratio,
)
from riskgate.detection.risk import RiskLevel
from riskgate.geoip.lookup import GeoResult

from tests.conftest import HUMAN_UA, fixed_geo

FP = "f" * 64


def _curved_trace(n: int = 30) -> list[MousePoint]:
    return [
        MousePoint(100 + 50 * math.cos(i / 5), 100 + 50 * math.sin(i / 5), 1000 + 16 * i)
        for i in range(n)
    ]


def _human_keys() -> list[Keystroke]:
    t, keys = 0.0, []
    for i, ch in enumerate("hello"):
        t += 100 if i % 2 else 300
        keys.append(Keystroke(ch, t))
    return keys


@pytest.fixture
def analyzer():
    return BehaviorAnalyzer(geo_lookup=fixed_geo)


def test_human_request_scores_zero(analyzer: BehaviorAnalyzer):
    """Curved mouse, jittered typing and human timings should add nothing."""
    result = analyzer.analyze(
        user_agent=HUMAN_UA,
        fingerprint=FP,
        ip_address="8.8.8.8",
        mouse_movements=_curved_trace(),
        keystrokes=_human_keys(),
        request_timings=[0, 1000, 2500, 3100],
        previous_challenge_count=0,
    )
    assert result.score == 0
    assert result.risk_level == RiskLevel.LOW
    assert result.signals == []


def test_curl_without_interaction(analyzer: BehaviorAnalyzer):
    """curl with empty traces: 22.5 (UA) + 20 (mouse) + 10 (keys)."""
    result = analyzer.analyze(
        user_agent="curl/8.0",
        fingerprint=FP,
        ip_address="8.8.8.8",
        mouse_movements=[],
        keystrokes=[],
    )
    assert result.score >= 45
    assert result.score == 53
    assert result.risk_level == RiskLevel.HIGH
    assert "suspicious_ua" in result.signals
    assert "no_mouse_movement" in result.signals
    assert "no_keystrokes" in result.signals


def test_absent_traces_add_nothing(analyzer: BehaviorAnalyzer):
    result = analyzer.analyze(HUMAN_UA, FP, "8.8.8.8")
    assert result.score == 0


def test_minimal_mouse(analyzer: BehaviorAnalyzer):
    result = analyzer.analyze(HUMAN_UA, FP, "8.8.8.8", mouse_movements=_curved_trace(3))
    assert result.score == 15
    assert result.signals == ["minimal_mouse_movement"]


def test_linear_mouse(analyzer: BehaviorAnalyzer):
    line = [MousePoint(10 * i, 5 * i, i) for i in range(20)]
    result = analyzer.analyze(HUMAN_UA, FP, "8.8.8.8", mouse_movements=line)
    assert result.score == 10
    assert "linear_mouse_movement" in result.signals


def test_uniform_keystrokes(analyzer: BehaviorAnalyzer):
    keys = [Keystroke("a", 50 * i) for i in range(10)]
    result = analyzer.analyze(HUMAN_UA, FP, "8.8.8.8", keystrokes=keys)
    assert result.score == 15
    assert "uniform_keystrokes" in result.signals


def test_only_recent_events_are_analyzed(analyzer: BehaviorAnalyzer):
    """Only the last 50 mouse points count: an old straight prefix is ignored."""
    old_line = [MousePoint(10 * i, 5 * i, i) for i in range(200)]
    result = analyzer.analyze(
        HUMAN_UA, FP, "8.8.8.8", mouse_movements=old_line + _curved_trace(50),
    )
    assert "linear_mouse_movement" not in result.signals


def test_history_thresholds(analyzer: BehaviorAnalyzer):
    assert analyzer.analyze(HUMAN_UA, FP, "8.8.8.8", previous_challenge_count=5).score == 0
    assert analyzer.analyze(HUMAN_UA, FP, "8.8.8.8", previous_challenge_count=6).score == 8
    assert analyzer.analyze(HUMAN_UA, FP, "8.8.8.8", previous_challenge_count=11).score == 15


def test_unknown_geolocation_adds_points():
    analyzer = BehaviorAnalyzer(geo_lookup=lambda ip: None)
    result = analyzer.analyze(HUMAN_UA, FP, "10.0.0.1")
    assert result.score == 5
    assert "unknown_geolocation" in result.signals


def test_public_ip_without_geo_database_adds_points():
    """The default lookup has no City DB loaded, so public IPs stay unlocated."""
    result = BehaviorAnalyzer().analyze(HUMAN_UA, FP, "8.8.8.8")
    assert "unknown_geolocation" in result.signals


def test_weak_fingerprint_adds_points(analyzer: BehaviorAnalyzer):
    result = analyzer.analyze(HUMAN_UA, "abc", "8.8.8.8")
    assert result.score == 5
    assert "weak_fingerprint" in result.signals


def test_failing_signal_group_is_skipped():
    """A raising collaborator must not fail the whole analysis."""
    def broken(ip: str) -> GeoResult:
        raise RuntimeError("geo down")

    analyzer = BehaviorAnalyzer(geo_lookup=broken)
    result = analyzer.analyze("curl/8.0", FP, "8.8.8.8", mouse_movements=[])
    assert result.score == 43  # 22.5 + 20, geo group dropped


def test_score_is_bounded(analyzer: BehaviorAnalyzer):
    result = BehaviorAnalyzer(geo_lookup=lambda ip: None).analyze(
        user_agent="curl/8.0",
        fingerprint="x",
        ip_address="10.0.0.1",
        mouse_movements=[],
        keystrokes=[Keystroke("a", 10 * i) for i in range(5)],
        request_timings=[10 * i for i in range(10)],
        previous_challenge_count=50,
    )
    assert 0 <= result.score <= 100
    assert result.risk_level == RiskLevel.CRITICAL


def test_linear_ratio():
    assert linear_ratio([MousePoint(i, i, i) for i in range(10)]) == 1.0
    assert linear_ratio(_curved_trace()) == 0.0
    assert linear_ratio([MousePoint(0, 0, 0), MousePoint(1, 1, 1)]) == 0.0


def test_analyze_timing():
    assert analyze_timing([0, 1]) == (False, "Insufficient data")
    assert analyze_timing([0, 50, 100, 150])[0]                       # too fast
    assert analyze_timing([200 * i for i in range(8)])[0]             # too regular
    assert not analyze_timing([0, 1000, 2500, 3100])[0]
