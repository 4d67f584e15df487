"""The four independent analysis stages.

Every stage reads the same :class:`AnalysisSnapshot` and returns a plain
payload dict destined for its own metadata slot.  Stages never touch the
event or each other.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from auditguard.analysis.threats import (
    ImpossibleTravelRule,
    ThreatDetector,
    pattern_rules,
    threat_level,
)
from auditguard.classification.compliance import classify_compliance
from auditguard.core.constants import Severity, StageName, ThreatType
from auditguard.core.models import AnalysisSnapshot, RiskAssessment, ThreatIndicator
from auditguard.crypto.signer import EventSigner
from auditguard.risk.cache import RiskScoreCache
from auditguard.risk.calculator import CachedRiskCalculator, RiskCalculator
from auditguard.utils.async_helpers import run_blocking

BEHAVIORAL_ANOMALY_THRESHOLD = 0.7


class AnalysisStage(ABC):
    """Base class for a pipeline stage.

    Subclasses declare :attr:`name` and :attr:`required_fields`; the
    integrity check measures completeness against the latter.
    """

    name: StageName
    required_fields: tuple[str, ...] = ()

    @abstractmethod
    async def run(self, snapshot: AnalysisSnapshot) -> dict[str, Any]:
        """Compute this stage's payload for *snapshot*."""


class SecurityAnalysisStage(AnalysisStage):
    """Behavioral pattern, anomaly detection, risk scoring and threat indicators."""

    name = StageName.SECURITY_ANALYSIS
    required_fields = (
        "behavioral_pattern",
        "anomalies",
        "risk_score",
        "risk_factors",
        "threat_level",
    )

    def __init__(
        self,
        calculator: RiskCalculator | None = None,
        *,
        cache: RiskScoreCache | None = None,
        impossible_travel: ImpossibleTravelRule | None = None,
        anomaly_threshold: float = BEHAVIORAL_ANOMALY_THRESHOLD,
    ) -> None:
        self._calculator = calculator or RiskCalculator()
        self._cached = (
            CachedRiskCalculator(self._calculator, cache) if cache is not None else None
        )
        self._impossible_travel = impossible_travel or ImpossibleTravelRule()
        self._anomaly_threshold = anomaly_threshold

    async def run(self, snapshot: AnalysisSnapshot) -> dict[str, Any]:
        if self._cached is not None:
            assessment = await self._cached.assess(snapshot)
        else:
            assessment = await run_blocking(self._calculator.assess, snapshot)
        return await run_blocking(self._describe, snapshot, assessment)

    def _describe(self, snapshot: AnalysisSnapshot, assessment: RiskAssessment) -> dict[str, Any]:
        event, baseline = snapshot.event, snapshot.baseline
        indicators: list[ThreatIndicator] = []
        anomalies: dict[str, Any] = {}

        if baseline is not None and not baseline.is_empty:
            deviation = self._calculator.detector.analyze(
                event, baseline, snapshot.recent_activity
            )
            anomalies = deviation.model_dump()
            anomalies["score"] = deviation.score
            if deviation.score >= self._anomaly_threshold:
                indicators.append(
                    ThreatIndicator(
                        indicator_type=ThreatType.BEHAVIORAL_ANOMALY,
                        severity=Severity.MEDIUM,
                        confidence=round(deviation.score, 4),
                        description="activity deviates from the subject's baseline",
                        evidence={"deviation": round(deviation.score, 4)},
                    )
                )

        travel = self._impossible_travel.evaluate(snapshot)
        if travel is not None:
            indicators.append(travel)

        return {
            "behavioral_pattern": {
                "baseline_available": baseline is not None and not baseline.is_empty,
                "avg_events_per_hour": baseline.avg_events_per_hour if baseline else 0.0,
                "typical_event_types": list(baseline.typical_event_types) if baseline else [],
                "recent_event_count": len(snapshot.recent_activity),
            },
            "anomalies": anomalies,
            "risk_score": assessment.score,
            "risk_factors": dict(assessment.factors),
            "risk_cached": assessment.cached,
            "threat_indicators": [i.model_dump(mode="json") for i in indicators],
            "threat_level": threat_level(indicators),
        }


class ComplianceClassificationStage(AnalysisStage):
    name = StageName.COMPLIANCE_CLASSIFICATION
    required_fields = (
        "applicable_regulations",
        "retention_period_days",
        "encryption_required",
        "data_classification",
    )

    async def run(self, snapshot: AnalysisSnapshot) -> dict[str, Any]:
        return classify_compliance(snapshot.event)


class SigningStage(AnalysisStage):
    name = StageName.CRYPTOGRAPHIC_SIGNING
    required_fields = ("signature", "algorithm", "key_id", "nonce", "signed_at")

    def __init__(self, signer: EventSigner) -> None:
        self._signer = signer

    async def run(self, snapshot: AnalysisSnapshot) -> dict[str, Any]:
        return await run_blocking(self._signer.sign, snapshot.event)


class ThreatDetectionStage(AnalysisStage):
    """Pattern-matching threat rules (brute force, hijacking, exfiltration, ...)."""

    name = StageName.THREAT_DETECTION
    required_fields = ("indicators", "threat_level", "confidence")

    def __init__(self, detector: ThreatDetector | None = None) -> None:
        self._detector = detector or ThreatDetector(pattern_rules())

    async def run(self, snapshot: AnalysisSnapshot) -> dict[str, Any]:
        indicators = await run_blocking(self._detector.detect, snapshot)
        return {
            "indicators": [i.model_dump(mode="json") for i in indicators],
            "threat_level": threat_level(indicators),
            "confidence": max((i.confidence for i in indicators), default=0.0),
            "rules_evaluated": self._detector.rule_names,
        }
