"""Weighted aggregation of the six risk factors into a composite score."""

from __future__ import annotations

import structlog

from auditguard.analysis.behavior import BehavioralAnomalyDetector
from auditguard.core.config import RiskWeights
from auditguard.core.models import AnalysisSnapshot, RiskAssessment
from auditguard.risk import factors
from auditguard.risk.cache import RiskScoreCache

logger = structlog.get_logger(__name__)


class RiskCalculator:
    """Computes the bounded composite risk score for an analysis snapshot.

    Each factor is clamped to ``[0, 1]`` independently, weighted, summed,
    and the total is clamped to ``[0, 1]``.  Weights are never renormalized.

    Args:
        weights: Per-factor weights (must sum to 1.0).
        detector: Behavioral anomaly detector used by the behavioral factor.
    """

    def __init__(
        self,
        weights: RiskWeights | None = None,
        detector: BehavioralAnomalyDetector | None = None,
    ) -> None:
        self._weights = weights or RiskWeights()
        self._detector = detector or BehavioralAnomalyDetector()

    @property
    def weights(self) -> RiskWeights:
        return self._weights

    @property
    def detector(self) -> BehavioralAnomalyDetector:
        return self._detector

    def factor_scores(self, snapshot: AnalysisSnapshot) -> dict[str, float]:
        event = snapshot.event
        raw = {
            "severity": factors.severity_factor(event),
            "behavioral": factors.behavioral_factor(
                event, snapshot.baseline, snapshot.recent_activity, self._detector
            ),
            "temporal": factors.temporal_factor(event),
            "geographic": factors.geographic_factor(event, snapshot.baseline),
            "device": factors.device_factor(event, snapshot.baseline),
            "compliance": factors.compliance_factor(event),
        }
        return {name: min(1.0, max(0.0, score)) for name, score in raw.items()}

    def aggregate(self, factor_scores: dict[str, float]) -> float:
        weights = self._weights.as_dict()
        total = sum(weights[name] * factor_scores.get(name, 0.0) for name in weights)
        return min(1.0, max(0.0, total))

    def assess(self, snapshot: AnalysisSnapshot) -> RiskAssessment:
        scores = self.factor_scores(snapshot)
        return RiskAssessment(
            score=self.aggregate(scores),
            factors=scores,
            weights=self._weights.as_dict(),
        )


class CachedRiskCalculator:
    """Wraps a :class:`RiskCalculator` with a per-event side cache.

    Lookups are best-effort: cache failures are logged and the score is
    recomputed.
    """

    def __init__(self, calculator: RiskCalculator, cache: RiskScoreCache) -> None:
        self._calculator = calculator
        self._cache = cache

    @property
    def cache(self) -> RiskScoreCache:
        return self._cache

    async def assess(self, snapshot: AnalysisSnapshot) -> RiskAssessment:
        event = snapshot.event
        fingerprint = self._cache.fingerprint(
            event,
            snapshot.baseline,
            tuple(r.event_id for r in snapshot.recent_activity),
        )
        try:
            cached = await self._cache.get(event.event_id, fingerprint)
        except Exception:
            logger.warning("risk_cache_get_error", event_id=event.event_id, exc_info=True)
            cached = None
        if cached is not None:
            return cached.model_copy(update={"cached": True})

        assessment = self._calculator.assess(snapshot)
        try:
            await self._cache.set(
                event.event_id, fingerprint, assessment, subject_id=event.subject_id
            )
        except Exception:
            logger.warning("risk_cache_set_error", event_id=event.event_id, exc_info=True)
        return assessment
