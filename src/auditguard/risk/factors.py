"""The six independent risk factors, each a pure function returning a score in ``[0, 1]``."""

from __future__ import annotations

from collections.abc import Sequence

from auditguard.analysis.behavior import BehavioralAnomalyDetector
from auditguard.core.constants import ComplianceFlag, Severity
from auditguard.core.models import ActivityRecord, AuditEvent, BehavioralBaseline

NEUTRAL_BEHAVIORAL_SCORE = 0.5

SEVERITY_SCORES: dict[Severity, float] = {
    Severity.LOW: 0.1,
    Severity.MEDIUM: 0.3,
    Severity.HIGH: 0.7,
    Severity.CRITICAL: 0.9,
}
DEFAULT_SEVERITY_SCORE = 0.2

SENSITIVE_COMPLIANCE_FLAGS: frozenset[ComplianceFlag] = frozenset(
    {
        ComplianceFlag.GDPR_PERSONAL_DATA,
        ComplianceFlag.CCPA_PERSONAL_INFORMATION,
        ComplianceFlag.SENSITIVE_DATA_ACCESS,
    }
)


def _bounded(value: float) -> float:
    return min(1.0, max(0.0, value))


def severity_factor(event: AuditEvent) -> float:
    return SEVERITY_SCORES.get(event.severity, DEFAULT_SEVERITY_SCORE)


def behavioral_factor(
    event: AuditEvent,
    baseline: BehavioralBaseline | None,
    recent: Sequence[ActivityRecord],
    detector: BehavioralAnomalyDetector | None = None,
) -> float:
    """Deviation from the subject's baseline; ``0.5`` when there is none."""
    if baseline is None or baseline.is_empty:
        return NEUTRAL_BEHAVIORAL_SCORE
    deviation = (detector or BehavioralAnomalyDetector()).analyze(event, baseline, recent)
    return _bounded(deviation.score)


def temporal_factor(event: AuditEvent) -> float:
    hour = event.timestamp.hour
    if 9 <= hour <= 17:
        return 0.1
    if 18 <= hour <= 22:
        return 0.3
    if 0 <= hour <= 8 or hour == 23:
        return 0.6
    return 0.2


def geographic_factor(event: AuditEvent, baseline: BehavioralBaseline | None) -> float:
    if event.geolocation is None:
        return 0.1
    typical = baseline.typical_locations if baseline else ()
    return 0.1 if event.geolocation.country_code in typical else 0.7


def device_factor(event: AuditEvent, baseline: BehavioralBaseline | None) -> float:
    if not event.device_fingerprint:
        return 0.1
    known = baseline.known_devices if baseline else ()
    return 0.1 if event.device_fingerprint in known else 0.8


def compliance_factor(event: AuditEvent) -> float:
    if SENSITIVE_COMPLIANCE_FLAGS.intersection(event.compliance_flags):
        return 0.6
    return 0.2
