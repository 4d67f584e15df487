"""Audit event data models.

:class:`AuditEvent` is a frozen, versioned value.  Every ``with_*``
transform returns a new instance with ``version + 1``; published values
are never mutated in place.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Self
from uuid import uuid4

from pydantic import AwareDatetime, BaseModel, Field, field_validator

from auditguard.core.constants import (
    ComplianceFlag,
    EventCategory,
    Severity,
    StageName,
    ThreatType,
)
from auditguard.core.exceptions import EventStateError


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GeoLocation(BaseModel):
    country_code: str = Field(..., min_length=2, max_length=3)
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)

    model_config = {"frozen": True}


class Subject(BaseModel):
    """Who performed the action."""

    subject_id: str
    role: str | None = None

    model_config = {"frozen": True}


class EventContext(BaseModel):
    """Request-scoped attributes passed explicitly with every ingestion call."""

    session_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    geolocation: GeoLocation | None = None
    device_fingerprint: str | None = None

    model_config = {"frozen": True}


class ThreatIndicator(BaseModel):
    indicator_type: ThreatType
    severity: Severity
    confidence: float = Field(..., ge=0.0, le=1.0)
    description: str = ""
    evidence: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class AuditEvent(BaseModel):
    """An immutable, versioned record of an administrative or user action."""

    event_id: str = Field(default_factory=lambda: uuid4().hex)
    event_type: str
    timestamp: AwareDatetime = Field(default_factory=utc_now)
    subject_id: str | None = None
    subject_role: str | None = None
    session_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    geolocation: GeoLocation | None = None
    device_fingerprint: str | None = None
    category: EventCategory = EventCategory.SYSTEM
    severity: Severity = Severity.MEDIUM
    details: dict[str, Any] = Field(default_factory=dict)
    compliance_flags: tuple[ComplianceFlag, ...] = ()
    encryption_required: bool = False
    retention_period_days: int = Field(default=180, ge=0)
    risk_score: float | None = Field(default=None, ge=0.0, le=1.0)
    threat_indicators: tuple[ThreatIndicator, ...] = ()
    metadata: dict[str, Any] = Field(default_factory=dict)
    signature: str | None = None
    version: int = Field(default=1, ge=1)

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return value.astimezone(timezone.utc)

    # ------------------------------------------------------------------
    # With-transforms (each returns a new value, version + 1)
    # ------------------------------------------------------------------

    def _write_slot(self, slot: str, payload: dict[str, Any], **updates: Any) -> Self:
        if slot in self.metadata:
            raise EventStateError(
                f"metadata slot {slot!r} already written for event {self.event_id}",
                code="SLOT_ALREADY_WRITTEN",
            )
        # Deep copies keep earlier versions isolated from later mutation.
        metadata = {**copy.deepcopy(self.metadata), slot: copy.deepcopy(dict(payload))}
        return self.model_copy(
            update={"metadata": metadata, "version": self.version + 1, **updates},
            deep=True,
        )

    def with_security_analysis(self, analysis: dict[str, Any]) -> Self:
        """Attach the security analysis and adopt its composite risk score."""
        risk_score = analysis.get("risk_score")
        return self._write_slot(
            StageName.SECURITY_ANALYSIS.value, analysis, risk_score=risk_score
        )

    def with_compliance_classification(self, classification: dict[str, Any]) -> Self:
        return self._write_slot(StageName.COMPLIANCE_CLASSIFICATION.value, classification)

    def with_signature(self, signing: dict[str, Any]) -> Self:
        """Attach the HMAC signature.  An event is signed exactly once."""
        if self.signature is not None:
            raise EventStateError(
                f"event {self.event_id} is already signed; re-signing requires a new event",
                code="ALREADY_SIGNED",
            )
        return self._write_slot(
            StageName.CRYPTOGRAPHIC_SIGNING.value,
            signing,
            signature=signing["signature"],
        )

    def with_threat_detection(self, detection: dict[str, Any]) -> Self:
        indicators = tuple(
            ThreatIndicator.model_validate(raw) for raw in detection.get("indicators", [])
        )
        return self._write_slot(
            StageName.THREAT_DETECTION.value,
            detection,
            threat_indicators=indicators,
        )

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    @property
    def all_threat_indicators(self) -> list[ThreatIndicator]:
        """Indicators from threat detection plus those raised by security analysis."""
        found = list(self.threat_indicators)
        security = self.metadata.get(StageName.SECURITY_ANALYSIS.value) or {}
        for raw in security.get("threat_indicators", []):
            found.append(ThreatIndicator.model_validate(raw))
        return found

    def requires_immediate_alert(self) -> bool:
        if self.severity == Severity.CRITICAL:
            return True
        return any(
            ind.severity.rank >= Severity.HIGH.rank for ind in self.all_threat_indicators
        )

    @property
    def threat_level(self) -> Severity | None:
        indicators = self.all_threat_indicators
        if not indicators:
            return None
        return max((ind.severity for ind in indicators), key=lambda s: s.rank)

    @property
    def is_signed(self) -> bool:
        return self.signature is not None


class ActivityRecord(BaseModel):
    """A compact historical observation of a subject's activity."""

    event_id: str
    subject_id: str
    event_type: str
    timestamp: AwareDatetime
    session_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    geolocation: GeoLocation | None = None
    device_fingerprint: str | None = None

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return value.astimezone(timezone.utc)

    @classmethod
    def from_event(cls, event: AuditEvent) -> ActivityRecord:
        if event.subject_id is None:
            raise ValueError("system events without a subject have no activity record")
        return cls(
            event_id=event.event_id,
            subject_id=event.subject_id,
            event_type=event.event_type,
            timestamp=event.timestamp,
            session_id=event.session_id,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            geolocation=event.geolocation,
            device_fingerprint=event.device_fingerprint,
        )

    @property
    def country_code(self) -> str | None:
        return self.geolocation.country_code if self.geolocation else None


class BehavioralBaseline(BaseModel):
    """Per-subject aggregate of recent history."""

    subject_id: str
    avg_events_per_hour: float = Field(default=0.0, ge=0.0)
    typical_event_types: tuple[str, ...] = ()
    typical_hours: tuple[int, ...] = ()
    typical_locations: tuple[str, ...] = ()
    known_devices: tuple[str, ...] = ()
    event_count: int = Field(default=0, ge=0)
    window_days: int = 30
    computed_at: datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return self.event_count == 0


class AnalysisSnapshot(BaseModel):
    """The read-only input every analysis stage observes."""

    event: AuditEvent
    baseline: BehavioralBaseline | None = None
    recent_activity: tuple[ActivityRecord, ...] = ()
    """Most recent activity first, excluding the event under analysis."""

    model_config = {"frozen": True}


class RiskAssessment(BaseModel):
    score: float = Field(..., ge=0.0, le=1.0)
    factors: dict[str, float] = Field(default_factory=dict)
    weights: dict[str, float] = Field(default_factory=dict)
    cached: bool = False


class StageResult(BaseModel):
    """Outcome of one analysis stage: either ``data`` or ``error``."""

    stage: StageName
    data: dict[str, Any] | None = None
    error: str | None = None
    execution_time_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None and self.data is not None


class RecordResult(BaseModel):
    """Typed result of :meth:`AuditService.record_event`; never an exception."""

    success: bool
    event: AuditEvent | None = None
    error: str | None = None
    error_code: str | None = None
    fallback_used: bool = False
    latency_ms: int = 0


class IntegrityReport(BaseModel):
    checked: int = 0
    verified: int = 0
    mismatched: list[str] = Field(default_factory=list)
    unsigned: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.mismatched and not self.unsigned
