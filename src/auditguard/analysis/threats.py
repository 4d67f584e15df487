"""Pattern-matching threat detectors run by the threat-detection stage."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import timedelta

from auditguard.analysis.geo import GeoVelocityDetector
from auditguard.analysis.periodicity import PeriodicityDetector
from auditguard.core.constants import EventType, Severity, ThreatType
from auditguard.core.models import AnalysisSnapshot, ThreatIndicator

ADMIN_ROLES = frozenset({"admin", "super_admin", "security_admin"})


class ThreatRule(ABC):
    """Base class for threat rules.

    Subclass and implement :meth:`evaluate` to inspect an
    :class:`AnalysisSnapshot` and optionally return a :class:`ThreatIndicator`.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this rule."""
        ...

    @abstractmethod
    def evaluate(self, snapshot: AnalysisSnapshot) -> ThreatIndicator | None:
        """Return an indicator when the rule's pattern is present."""
        ...


class ImpossibleTravelRule(ThreatRule):
    """Compares the event with the subject's most recent geolocated activity."""

    def __init__(self, detector: GeoVelocityDetector | None = None) -> None:
        self._detector = detector or GeoVelocityDetector()

    @property
    def name(self) -> str:
        return "impossible_travel"

    def evaluate(self, snapshot: AnalysisSnapshot) -> ThreatIndicator | None:
        event = snapshot.event
        if event.geolocation is None:
            return None
        previous = next((r for r in snapshot.recent_activity if r.geolocation), None)
        if previous is None or previous.geolocation is None:
            return None

        travel = self._detector.assess(
            previous.geolocation, previous.timestamp, event.geolocation, event.timestamp
        )
        if not travel.impossible:
            return None
        return ThreatIndicator(
            indicator_type=ThreatType.IMPOSSIBLE_TRAVEL,
            severity=Severity.HIGH,
            confidence=0.9,
            description=(
                f"{travel.distance_km:.0f} km in {travel.elapsed_hours * 60:.1f} min "
                f"({travel.velocity_kmh:.0f} km/h)"
            ),
            evidence={
                "previous_event_id": previous.event_id,
                "distance_km": round(travel.distance_km, 3),
                "velocity_kmh": round(travel.velocity_kmh, 3),
                "threshold_kmh": self._detector.threshold_kmh,
            },
        )


class BruteForceRule(ThreatRule):
    """Repeated failed authentications within a short window."""

    def __init__(self, threshold: int = 5, window: timedelta = timedelta(minutes=15)) -> None:
        self._threshold = threshold
        self._window = window

    @property
    def name(self) -> str:
        return "brute_force"

    def evaluate(self, snapshot: AnalysisSnapshot) -> ThreatIndicator | None:
        event = snapshot.event
        if event.event_type != EventType.FAILED_AUTHENTICATION:
            return None
        since = event.timestamp - self._window
        failures = 1 + sum(
            1
            for r in snapshot.recent_activity
            if r.event_type == EventType.FAILED_AUTHENTICATION and r.timestamp >= since
        )
        if failures < self._threshold:
            return None
        return ThreatIndicator(
            indicator_type=ThreatType.BRUTE_FORCE,
            severity=Severity.HIGH,
            confidence=min(0.99, 0.6 + 0.05 * (failures - self._threshold)),
            description=f"{failures} failed authentications in {self._window}",
            evidence={"failures": failures, "window_seconds": self._window.total_seconds()},
        )


class PrivilegeEscalationRule(ThreatRule):
    @property
    def name(self) -> str:
        return "privilege_escalation"

    def evaluate(self, snapshot: AnalysisSnapshot) -> ThreatIndicator | None:
        event = snapshot.event
        if event.event_type == EventType.PRIVILEGE_ESCALATION:
            return ThreatIndicator(
                indicator_type=ThreatType.PRIVILEGE_ESCALATION,
                severity=Severity.HIGH,
                confidence=0.85,
                description="privilege escalation recorded",
                evidence={"subject_role": event.subject_role},
            )
        if event.event_type in (EventType.ROLE_CHANGED, EventType.PERMISSION_GRANTED):
            role = (event.subject_role or "").lower()
            if role not in ADMIN_ROLES:
                return ThreatIndicator(
                    indicator_type=ThreatType.PRIVILEGE_ESCALATION,
                    severity=Severity.MEDIUM,
                    confidence=0.6,
                    description="access change performed by a non-admin subject",
                    evidence={"subject_role": event.subject_role},
                )
        return None


class SessionHijackingRule(ThreatRule):
    """The same session observed from a different IP address or user agent."""

    @property
    def name(self) -> str:
        return "session_hijacking"

    def evaluate(self, snapshot: AnalysisSnapshot) -> ThreatIndicator | None:
        event = snapshot.event
        if event.session_id is None:
            return None
        for record in snapshot.recent_activity:
            if record.session_id != event.session_id:
                continue
            changed: list[str] = []
            if record.ip_address and event.ip_address and record.ip_address != event.ip_address:
                changed.append("ip_address")
            if record.user_agent and event.user_agent and record.user_agent != event.user_agent:
                changed.append("user_agent")
            if changed:
                return ThreatIndicator(
                    indicator_type=ThreatType.SESSION_HIJACKING,
                    severity=Severity.HIGH if len(changed) == 2 else Severity.MEDIUM,
                    confidence=0.8 if len(changed) == 2 else 0.6,
                    description=f"session attributes changed: {', '.join(changed)}",
                    evidence={"previous_event_id": record.event_id, "changed": changed},
                )
        return None


class DataExfiltrationRule(ThreatRule):
    """A burst of exports within an hour."""

    def __init__(self, threshold: int = 3, window: timedelta = timedelta(hours=1)) -> None:
        self._threshold = threshold
        self._window = window

    @property
    def name(self) -> str:
        return "data_exfiltration"

    def evaluate(self, snapshot: AnalysisSnapshot) -> ThreatIndicator | None:
        event = snapshot.event
        if event.event_type != EventType.DATA_EXPORTED:
            return None
        since = event.timestamp - self._window
        exports = 1 + sum(
            1
            for r in snapshot.recent_activity
            if r.event_type == EventType.DATA_EXPORTED and r.timestamp >= since
        )
        if exports < self._threshold:
            return None
        return ThreatIndicator(
            indicator_type=ThreatType.DATA_EXFILTRATION,
            severity=Severity.HIGH,
            confidence=min(0.95, 0.5 + 0.1 * exports),
            description=f"{exports} exports within {self._window}",
            evidence={"exports": exports},
        )


class AutomatedActivityRule(ThreatRule):
    """Machine-regular activity, typical of scripted credentials or beaconing."""

    def __init__(self, detector: PeriodicityDetector | None = None) -> None:
        self._detector = detector or PeriodicityDetector()

    @property
    def name(self) -> str:
        return "automated_activity"

    def evaluate(self, snapshot: AnalysisSnapshot) -> ThreatIndicator | None:
        timestamps = [r.timestamp for r in snapshot.recent_activity]
        timestamps.append(snapshot.event.timestamp)
        result = self._detector.detect(timestamps)
        if not result.periodic:
            return None
        return ThreatIndicator(
            indicator_type=ThreatType.AUTOMATED_ACTIVITY,
            severity=Severity.MEDIUM,
            confidence=round(result.strength, 4),
            description=f"activity repeats every ~{result.period_seconds:.0f}s",
            evidence={
                "period_seconds": result.period_seconds,
                "sample_size": result.sample_size,
            },
        )


def default_rules(impossible_travel_kmh: float = 1000.0) -> list[ThreatRule]:
    return [
        ImpossibleTravelRule(GeoVelocityDetector(impossible_travel_kmh)),
        BruteForceRule(),
        PrivilegeEscalationRule(),
        SessionHijackingRule(),
        DataExfiltrationRule(),
        AutomatedActivityRule(),
    ]


def pattern_rules() -> list[ThreatRule]:
    """Rules for the threat-detection stage.

    Impossible travel is a geographic anomaly and is raised by security
    analysis instead, so it is not repeated here.
    """
    return [
        BruteForceRule(),
        PrivilegeEscalationRule(),
        SessionHijackingRule(),
        DataExfiltrationRule(),
        AutomatedActivityRule(),
    ]


def threat_level(indicators: list[ThreatIndicator]) -> str:
    """Highest indicator severity, or ``"none"``."""
    if not indicators:
        return "none"
    return max((i.severity for i in indicators), key=lambda s: s.rank).value


class ThreatDetector:
    """Runs every registered rule against a snapshot.

    Uses a builder-style API::

        detector = ThreatDetector().add_rule(BruteForceRule(threshold=3))
    """

    def __init__(self, rules: list[ThreatRule] | None = None) -> None:
        self._rules: list[ThreatRule] = list(rules) if rules is not None else default_rules()

    def add_rule(self, rule: ThreatRule) -> ThreatDetector:
        self._rules.append(rule)
        return self

    @property
    def rule_names(self) -> list[str]:
        return [rule.name for rule in self._rules]

    def detect(self, snapshot: AnalysisSnapshot) -> list[ThreatIndicator]:
        indicators: list[ThreatIndicator] = []
        for rule in self._rules:
            indicator = rule.evaluate(snapshot)
            if indicator is not None:
                indicators.append(indicator)
        return indicators
