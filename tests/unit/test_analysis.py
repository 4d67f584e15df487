"""Tests for analysis/: geo velocity, behavioral deviation, periodicity, threat rules."""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from auditguard.analysis.behavior import BehavioralAnomalyDetector, compute_baseline
from auditguard.analysis.geo import GeoVelocityDetector, haversine_km, travel_velocity_kmh
from auditguard.analysis.periodicity import PeriodicityDetector, autocorrelation, bucket_counts
from auditguard.analysis.threats import (
    BruteForceRule,
    DataExfiltrationRule,
    ImpossibleTravelRule,
    PrivilegeEscalationRule,
    SessionHijackingRule,
    ThreatDetector,
    default_rules,
    pattern_rules,
    threat_level,
)
from auditguard.core.constants import Severity, ThreatType
from auditguard.core.models import (
    ActivityRecord,
    AnalysisSnapshot,
    AuditEvent,
    BehavioralBaseline,
    GeoLocation,
    ThreatIndicator,
)

NOW = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
ORIGIN = GeoLocation(country_code="US", latitude=0.0, longitude=0.0)
# ~2000 km and ~5 km east of ORIGIN along the equator.
FAR = GeoLocation(country_code="BR", latitude=0.0, longitude=17.9865)
NEAR = GeoLocation(country_code="US", latitude=0.0, longitude=0.044966)


def _record(
    event_id: str,
    *,
    minutes_ago: float,
    event_type: str = "user_login",
    geolocation: GeoLocation | None = None,
    session_id: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    device_fingerprint: str | None = None,
) -> ActivityRecord:
    return ActivityRecord(
        event_id=event_id,
        subject_id="u-1",
        event_type=event_type,
        timestamp=NOW - timedelta(minutes=minutes_ago),
        geolocation=geolocation,
        session_id=session_id,
        ip_address=ip_address,
        user_agent=user_agent,
        device_fingerprint=device_fingerprint,
    )


# ---------------------------------------------------------------------------
# Geo
# ---------------------------------------------------------------------------


def test_haversine_zero_for_same_point() -> None:
    assert haversine_km(ORIGIN, ORIGIN) == 0.0


def test_haversine_known_distances() -> None:
    assert haversine_km(ORIGIN, FAR) == pytest.approx(2000.0, rel=1e-3)
    assert haversine_km(ORIGIN, NEAR) == pytest.approx(5.0, rel=1e-3)


def test_haversine_is_symmetric() -> None:
    assert haversine_km(ORIGIN, FAR) == pytest.approx(haversine_km(FAR, ORIGIN))


def test_velocity_zero_elapsed_is_zero() -> None:
    assert travel_velocity_kmh(ORIGIN, NOW, FAR, NOW) == 0.0


def test_impossible_travel_detected() -> None:
    travel = GeoVelocityDetector().assess(ORIGIN, NOW - timedelta(minutes=10), FAR, NOW)
    assert travel.velocity_kmh == pytest.approx(12000.0, rel=1e-3)
    assert travel.impossible is True


def test_short_hop_is_possible() -> None:
    travel = GeoVelocityDetector().assess(ORIGIN, NOW - timedelta(minutes=10), NEAR, NOW)
    assert travel.velocity_kmh == pytest.approx(30.0, rel=1e-3)
    assert travel.impossible is False


def test_threshold_is_configurable() -> None:
    detector = GeoVelocityDetector(threshold_kmh=20.0)
    assert detector.assess(ORIGIN, NOW - timedelta(minutes=10), NEAR, NOW).impossible is True


# ---------------------------------------------------------------------------
# Behavior
# ---------------------------------------------------------------------------


def test_compute_baseline_summarizes_window() -> None:
    history = [
        _record("a", minutes_ago=60, geolocation=ORIGIN, device_fingerprint="d1"),
        _record("b", minutes_ago=120, geolocation=ORIGIN, device_fingerprint="d1"),
        _record("c", minutes_ago=180, event_type="data_accessed", device_fingerprint="d2"),
        # Outside the 30-day window.
        _record("old", minutes_ago=60 * 24 * 40, event_type="data_deleted"),
    ]
    baseline = compute_baseline("u-1", history, now=NOW, window_days=30)
    assert baseline.event_count == 3
    assert baseline.avg_events_per_hour == pytest.approx(3 / (30 * 24))
    assert baseline.typical_event_types == ("user_login", "data_accessed")
    assert baseline.typical_locations == ("US",)
    assert baseline.known_devices == ("d2", "d1")
    assert "data_deleted" not in baseline.typical_event_types


def test_compute_baseline_ignores_other_subjects() -> None:
    other = ActivityRecord(event_id="x", subject_id="u-2", event_type="user_login", timestamp=NOW)
    assert compute_baseline("u-1", [other], now=NOW).is_empty


def test_deviation_all_sub_anomalies(make_event: Callable[..., AuditEvent]) -> None:
    baseline = BehavioralBaseline(
        subject_id="u-1",
        avg_events_per_hour=1.0,
        typical_event_types=("user_login",),
        typical_hours=(14,),
        typical_locations=("US",),
        event_count=100,
    )
    recent = [_record(f"r{i}", minutes_ago=5 + i, event_type="data_exported") for i in range(5)]
    event = make_event(
        "data_exported",
        geolocation=GeoLocation(country_code="RU", latitude=55.7, longitude=37.6),
    )
    deviation = BehavioralAnomalyDetector().analyze(event, baseline, recent)
    assert deviation.current_hour_count == 6
    assert deviation.frequency_anomaly == 1.0
    assert deviation.type_anomaly == 1.0
    assert deviation.time_anomaly == 0.8
    assert deviation.geo_anomaly == 0.9
    assert deviation.score == pytest.approx(0.925)


@pytest.mark.parametrize(
    ("avg_per_hour", "recent_count", "expected"),
    [
        (1.0, 1, 1.0),  # ratio 2
        (4.0, 4, 0.5),  # ratio 1.25
        (2.0, 1, 0.0),  # ratio 1
        (4.0, 2, 0.5),  # ratio 0.75
    ],
)
def test_frequency_anomaly_is_doubled_ratio_deviation(
    make_event: Callable[..., AuditEvent],
    avg_per_hour: float,
    recent_count: int,
    expected: float,
) -> None:
    baseline = BehavioralBaseline(
        subject_id="u-1",
        avg_events_per_hour=avg_per_hour,
        typical_event_types=("user_login",),
        typical_hours=(10,),
        typical_locations=("US",),
        event_count=100,
    )
    recent = [_record(f"r{i}", minutes_ago=5 + i) for i in range(recent_count)]
    deviation = BehavioralAnomalyDetector().analyze(make_event("user_login"), baseline, recent)
    assert deviation.current_hour_count == recent_count + 1
    assert deviation.frequency_anomaly == pytest.approx(expected)


def test_deviation_matching_behavior(make_event: Callable[..., AuditEvent]) -> None:
    baseline = BehavioralBaseline(
        subject_id="u-1",
        avg_events_per_hour=1.0,
        typical_event_types=("user_login",),
        typical_hours=(10,),
        typical_locations=("US",),
        event_count=100,
    )
    event = make_event("user_login", geolocation=ORIGIN)
    deviation = BehavioralAnomalyDetector().analyze(event, baseline, [])
    assert deviation.score == 0.0


# ---------------------------------------------------------------------------
# Periodicity
# ---------------------------------------------------------------------------


def test_bucket_counts() -> None:
    stamps = [NOW, NOW + timedelta(seconds=30), NOW + timedelta(seconds=150)]
    assert bucket_counts(stamps, 60) == [2, 0, 1]


def test_autocorrelation_constant_series_is_zero() -> None:
    assert autocorrelation([1, 1, 1, 1], 2) == 0.0
    assert autocorrelation([1, 0, 1], 5) == 0.0


def test_periodic_activity_detected() -> None:
    stamps = [NOW + timedelta(minutes=5 * i) for i in range(12)]
    result = PeriodicityDetector().detect(stamps)
    assert result.periodic is True
    assert result.period_seconds == 300.0
    assert result.strength > 0.9


def test_too_few_events_never_periodic() -> None:
    stamps = [NOW + timedelta(minutes=5 * i) for i in range(3)]
    result = PeriodicityDetector().detect(stamps)
    assert result.periodic is False
    assert result.sample_size == 3


# ---------------------------------------------------------------------------
# Threat rules
# ---------------------------------------------------------------------------


def test_impossible_travel_rule(make_event: Callable[..., AuditEvent]) -> None:
    snapshot = AnalysisSnapshot(
        event=make_event(geolocation=FAR),
        recent_activity=(_record("prev", minutes_ago=10, geolocation=ORIGIN),),
    )
    indicator = ImpossibleTravelRule().evaluate(snapshot)
    assert indicator is not None
    assert indicator.indicator_type == ThreatType.IMPOSSIBLE_TRAVEL
    assert indicator.severity == Severity.HIGH
    assert indicator.evidence["previous_event_id"] == "prev"


def test_impossible_travel_rule_needs_history(make_event: Callable[..., AuditEvent]) -> None:
    snapshot = AnalysisSnapshot(event=make_event(geolocation=FAR))
    assert ImpossibleTravelRule().evaluate(snapshot) is None


def test_brute_force_rule(make_event: Callable[..., AuditEvent]) -> None:
    recent = tuple(
        _record(f"f{i}", minutes_ago=i + 1, event_type="failed_authentication")
        for i in range(4)
    )
    snapshot = AnalysisSnapshot(event=make_event("failed_authentication"), recent_activity=recent)
    indicator = BruteForceRule().evaluate(snapshot)
    assert indicator is not None
    assert indicator.evidence["failures"] == 5

    fewer = AnalysisSnapshot(event=make_event("failed_authentication"), recent_activity=recent[:2])
    assert BruteForceRule().evaluate(fewer) is None


def test_privilege_escalation_rule(make_event: Callable[..., AuditEvent]) -> None:
    rule = PrivilegeEscalationRule()
    escalation = rule.evaluate(AnalysisSnapshot(event=make_event("privilege_escalation")))
    assert escalation is not None and escalation.severity == Severity.HIGH

    by_user = rule.evaluate(AnalysisSnapshot(event=make_event("role_changed", role="viewer")))
    assert by_user is not None and by_user.severity == Severity.MEDIUM

    by_admin = rule.evaluate(AnalysisSnapshot(event=make_event("role_changed", role="admin")))
    assert by_admin is None


def test_session_hijacking_rule(make_event: Callable[..., AuditEvent]) -> None:
    previous = _record(
        "p", minutes_ago=2, session_id="s", ip_address="10.0.0.1", user_agent="firefox"
    )
    event = make_event(session_id="s", ip_address="10.0.0.2", user_agent="curl")
    indicator = SessionHijackingRule().evaluate(
        AnalysisSnapshot(event=event, recent_activity=(previous,))
    )
    assert indicator is not None
    assert indicator.severity == Severity.HIGH
    assert indicator.evidence["changed"] == ["ip_address", "user_agent"]


def test_data_exfiltration_rule(make_event: Callable[..., AuditEvent]) -> None:
    recent = tuple(
        _record(f"x{i}", minutes_ago=10 * (i + 1), event_type="data_exported") for i in range(2)
    )
    indicator = DataExfiltrationRule().evaluate(
        AnalysisSnapshot(event=make_event("data_exported"), recent_activity=recent)
    )
    assert indicator is not None
    assert indicator.evidence["exports"] == 3


def test_pattern_rules_exclude_impossible_travel() -> None:
    assert "impossible_travel" not in ThreatDetector(pattern_rules()).rule_names
    assert "impossible_travel" in ThreatDetector(default_rules()).rule_names


def test_detector_add_rule_is_chainable() -> None:
    detector = ThreatDetector([]).add_rule(BruteForceRule(threshold=1))
    assert detector.rule_names == ["brute_force"]


def test_threat_level() -> None:
    low = ThreatIndicator(
        indicator_type=ThreatType.AUTOMATED_ACTIVITY, severity=Severity.MEDIUM, confidence=0.5
    )
    high = ThreatIndicator(
        indicator_type=ThreatType.BRUTE_FORCE, severity=Severity.HIGH, confidence=0.5
    )
    assert threat_level([]) == "none"
    assert threat_level([low, high]) == "high"
