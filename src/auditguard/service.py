"""The :class:`AuditService` entrypoint: ingestion, verification and query."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from pydantic import ValidationError

from auditguard.analysis.geo import GeoVelocityDetector
from auditguard.analysis.threats import ImpossibleTravelRule, ThreatDetector, pattern_rules
from auditguard.bus.event_bus import EventBus
from auditguard.bus.messages import messages_for
from auditguard.classification.classifier import EventClassifier
from auditguard.core.config import EngineConfig
from auditguard.core.constants import BusTopic
from auditguard.core.exceptions import (
    AuditGuardError,
    EventStateError,
    InvalidEventError,
    SignatureMismatchError,
    StorageFailureError,
)
from auditguard.core.models import (
    ActivityRecord,
    AnalysisSnapshot,
    AuditEvent,
    EventContext,
    IntegrityReport,
    RecordResult,
    RiskAssessment,
    Subject,
)
from auditguard.crypto.keys import EnvSecretsProvider, SecretsProvider
from auditguard.crypto.signer import EventSigner
from auditguard.pipeline.integrity import IntegrityValidator
from auditguard.pipeline.orchestrator import ParallelAnalysisOrchestrator
from auditguard.pipeline.stages import (
    ComplianceClassificationStage,
    SecurityAnalysisStage,
    SigningStage,
    ThreatDetectionStage,
)
from auditguard.resilience.circuit_breaker import CircuitBreaker
from auditguard.resilience.retry import RetryPolicy
from auditguard.risk.cache import InMemoryRiskCache, RiskScoreCache
from auditguard.risk.calculator import CachedRiskCalculator, RiskCalculator
from auditguard.stores.audit import AuditStore, InMemoryAuditStore
from auditguard.stores.baseline import BaselineProvider, InMemoryBaselineProvider
from auditguard.stores.query import AuditQuery, QueryCache, QueryPage
from auditguard.utils.logging import bound_event_context

logger = structlog.get_logger(__name__)


class AuditService:
    """Records, scores, signs and publishes audit events.

    All collaborators are injected; anything omitted gets an in-memory
    default so the service works out of the box in tests.

    Example::

        service = AuditService(secrets=StaticSecretsProvider("k1", key_bytes))
        result = await service.record_event(
            "user_login",
            Subject(subject_id="u-1"),
            {"method": "password"},
            EventContext(ip_address="203.0.113.7"),
        )
        if result.success:
            assert service.verify_event(result.event)

    Args:
        secrets: Source of the HMAC signing key.
        config: Engine configuration (defaults to :class:`EngineConfig`).
        baseline_provider: Read-only behavioral baselines and recent activity.
        store: Durable append-only primary store.
        fallback_store: Local store used when the primary store fails.
        bus: Outbound event bus.
        risk_cache: Side cache for risk scores; ``None`` builds an in-memory one.
        threat_detector: Pattern rules for the threat-detection stage.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        *,
        secrets: SecretsProvider,
        config: EngineConfig | None = None,
        baseline_provider: BaselineProvider | None = None,
        store: AuditStore | None = None,
        fallback_store: AuditStore | None = None,
        bus: EventBus | None = None,
        risk_cache: RiskScoreCache | None = None,
        threat_detector: ThreatDetector | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._baselines = baseline_provider or InMemoryBaselineProvider(
            window_days=self._config.baseline_window_days,
            top_n=self._config.baseline_top_n,
            clock=self._clock,
        )
        self._store = store if store is not None else InMemoryAuditStore()
        self._fallback_store = (
            fallback_store if fallback_store is not None else InMemoryAuditStore()
        )
        self._bus = bus if bus is not None else EventBus()
        self._risk_cache = risk_cache or InMemoryRiskCache(
            ttl_seconds=self._config.risk_cache_ttl_seconds,
            max_size=self._config.risk_cache_max_size,
        )

        self._classifier = EventClassifier()
        self._signer = EventSigner(secrets, clock=self._clock)
        self._calculator = RiskCalculator(self._config.risk_weights)
        self._cached_calculator = CachedRiskCalculator(self._calculator, self._risk_cache)
        self._orchestrator = ParallelAnalysisOrchestrator(
            [
                SecurityAnalysisStage(
                    self._calculator,
                    cache=self._risk_cache,
                    impossible_travel=ImpossibleTravelRule(
                        GeoVelocityDetector(self._config.impossible_travel_kmh)
                    ),
                ),
                ComplianceClassificationStage(),
                SigningStage(self._signer),
                ThreatDetectionStage(threat_detector or ThreatDetector(pattern_rules())),
            ],
            timeout_seconds=self._config.stage_timeout_seconds,
            validator=IntegrityValidator(self._config.completeness_threshold),
        )
        self._query_cache = QueryCache(ttl_seconds=self._config.query_cache_ttl_seconds)
        self._storage_retry = RetryPolicy(
            max_retries=self._config.storage_max_retries,
            backoff_base=self._config.storage_backoff_base,
        )
        self._breaker = CircuitBreaker(
            failure_threshold=self._config.failure_threshold,
            recovery_timeout=self._config.recovery_timeout_seconds,
            excluded_exceptions=(InvalidEventError,),
            name="ingestion",
        )
        self._guarded_ingest = self._breaker.as_decorator()(self._ingest)

    @classmethod
    def from_env(cls, **collaborators: Any) -> AuditService:
        """Build a service from ``AUDITGUARD_*`` variables and an env-backed key."""
        collaborators.setdefault("secrets", EnvSecretsProvider())
        return cls(config=EngineConfig.from_env(), **collaborators)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def store(self) -> AuditStore:
        return self._store

    @property
    def fallback_store(self) -> AuditStore:
        return self._fallback_store

    @property
    def baseline_provider(self) -> BaselineProvider:
        return self._baselines

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._breaker

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def record_event(
        self,
        event_type: str,
        subject: Subject | Mapping[str, Any] | None = None,
        details: Mapping[str, Any] | None = None,
        context: EventContext | Mapping[str, Any] | None = None,
        *,
        timestamp: datetime | None = None,
    ) -> RecordResult:
        """Classify, analyze, sign, store and publish one event.

        Never raises; every failure is reported through the returned
        :class:`RecordResult`.
        """
        started = time.monotonic()

        def _latency() -> int:
            return int((time.monotonic() - started) * 1000)

        try:
            event, fallback_used = await self._guarded_ingest(
                event_type, subject, details, context, timestamp
            )
        except InvalidEventError as exc:
            logger.info("audit_event_rejected", event_type=event_type, error=str(exc))
            return RecordResult(
                success=False, error=str(exc), error_code=exc.code, latency_ms=_latency()
            )
        except AuditGuardError as exc:
            logger.warning(
                "audit_event_not_recorded",
                event_type=event_type,
                error=str(exc),
                error_code=exc.code,
            )
            return RecordResult(
                success=False, error=str(exc), error_code=exc.code, latency_ms=_latency()
            )
        except Exception as exc:
            logger.exception("audit_event_failed", event_type=event_type)
            return RecordResult(
                success=False,
                error=str(exc) or type(exc).__name__,
                error_code="INTERNAL_ERROR",
                latency_ms=_latency(),
            )

        return RecordResult(
            success=True, event=event, fallback_used=fallback_used, latency_ms=_latency()
        )

    async def _ingest(
        self,
        event_type: str,
        subject: Subject | Mapping[str, Any] | None,
        details: Mapping[str, Any] | None,
        context: EventContext | Mapping[str, Any] | None,
        timestamp: datetime | None,
    ) -> tuple[AuditEvent, bool]:
        subject_model, context_model = _coerce_inputs(subject, context)
        event = self._classifier.classify(
            event_type,
            subject_model,
            details,
            context_model,
            timestamp=timestamp or self._clock(),
        )

        with bound_event_context(event_id=event.event_id, subject_id=event.subject_id):
            snapshot = await self._snapshot(event)
            outcome = await self._orchestrator.analyze(snapshot)
            final = outcome.event

            fallback_used = await self._persist(final)
            self._query_cache.invalidate_all()
            await self._record_activity(final)

            for message in messages_for(final):
                await self._bus.publish(message)

            logger.info(
                "audit_event_recorded",
                event_type=final.event_type,
                subject_id=final.subject_id,
                risk_score=final.risk_score,
                version=final.version,
                failed_stages=outcome.failed_stages,
                fallback_used=fallback_used,
            )
        return final, fallback_used

    async def _snapshot(self, event: AuditEvent) -> AnalysisSnapshot:
        """Fetch baseline and recent activity once, before the stages fan out."""
        if event.subject_id is None:
            return AnalysisSnapshot(event=event)

        baseline = None
        try:
            baseline = await self._baselines.get_baseline(event.subject_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("baseline_unavailable", subject_id=event.subject_id, error=str(exc))

        recent: list[ActivityRecord] = []
        try:
            recent = await self._baselines.recent_activity(
                event.subject_id,
                since=event.timestamp - timedelta(hours=self._config.recent_window_hours),
                until=event.timestamp,
                limit=self._config.recent_window_limit,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "recent_activity_unavailable", subject_id=event.subject_id, error=str(exc)
            )

        return AnalysisSnapshot(
            event=event,
            baseline=baseline,
            recent_activity=tuple(r for r in recent if r.event_id != event.event_id),
        )

    async def _persist(self, event: AuditEvent) -> bool:
        """Append to the primary store, falling back locally.  Returns ``True`` on fallback.

        Any primary failure, once retries are exhausted, takes the fallback path.

        Raises:
            StorageFailureError: If the fallback store fails as well.
        """
        try:
            await self._storage_retry.execute(self._store.append, event)
            return False
        except EventStateError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "storage_failure",
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
                details=getattr(exc, "details", None),
            )
            primary_error = exc

        try:
            await self._fallback_store.append(event)
        except Exception as exc:
            raise StorageFailureError(
                "primary and fallback stores both failed",
                details={"event_id": event.event_id, "primary": str(primary_error)},
            ) from exc

        logger.warning("storage_fallback_used", fallback=type(self._fallback_store).__name__)
        await self._bus.emit(
            BusTopic.AUDIT_STORAGE_FAILURE,
            {
                "id": event.event_id,
                "error": str(primary_error) or type(primary_error).__name__,
                "fallback": type(self._fallback_store).__name__,
                "timestamp": self._clock().isoformat(),
            },
        )
        return True

    async def _record_activity(self, event: AuditEvent) -> None:
        if event.subject_id is None:
            return
        try:
            await self._baselines.record(ActivityRecord.from_event(event))
        except Exception as exc:  # noqa: BLE001
            logger.warning("activity_record_error", subject_id=event.subject_id, error=str(exc))

    # ------------------------------------------------------------------
    # Risk
    # ------------------------------------------------------------------

    async def risk_score(self, event: AuditEvent) -> RiskAssessment:
        """Composite risk for *event* against the subject's current baseline."""
        snapshot = await self._snapshot(event)
        return await self._cached_calculator.assess(snapshot)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_event(self, event: AuditEvent) -> bool:
        """Constant-time HMAC verification.  A mismatch is logged, never raised."""
        valid = self._signer.verify(event)
        if not valid:
            logger.warning(
                "signature_mismatch", event_id=event.event_id, signed=event.is_signed
            )
        return valid

    def ensure_authentic(self, event: AuditEvent) -> None:
        """Raise when *event* does not verify.

        Raises:
            SignatureMismatchError: If the event is unsigned or its HMAC differs.
        """
        if not event.is_signed:
            raise SignatureMismatchError(event.event_id, reason="event is not signed")
        if not self.verify_event(event):
            raise SignatureMismatchError(event.event_id)

    async def verify_recent(self, limit: int = 100) -> IntegrityReport:
        """Re-verify the most recent stored events.

        Every failure is published as ``audit_integrity_failure``.
        """
        report = IntegrityReport()
        for event in await self._store.recent(limit):
            report.checked += 1
            if not event.is_signed:
                report.unsigned.append(event.event_id)
                reason = "unsigned"
            elif self._signer.verify(event):
                report.verified += 1
                continue
            else:
                report.mismatched.append(event.event_id)
                reason = "signature mismatch"

            logger.warning("integrity_failure", event_id=event.event_id, reason=reason)
            await self._bus.emit(
                BusTopic.AUDIT_INTEGRITY_FAILURE,
                {
                    "id": event.event_id,
                    "reason": reason,
                    "subject_id": event.subject_id,
                    "timestamp": event.timestamp.isoformat(),
                },
            )

        logger.info(
            "integrity_sweep_complete",
            checked=report.checked,
            verified=report.verified,
            mismatched=len(report.mismatched),
            unsigned=len(report.unsigned),
        )
        return report

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def query_events(self, query: AuditQuery | None = None) -> QueryPage:
        """Run *query* via the query cache.

        Events that only reached the fallback store are included; a page
        computed while a write landed is returned but not cached.
        """
        query = query or AuditQuery()
        cached = self._query_cache.get(query)
        if cached is not None:
            return cached

        generation = self._query_cache.generation
        fallback_events = await self._fallback_store.all()
        if fallback_events:
            merged = {event.event_id: event for event in await self._store.all()}
            for event in fallback_events:
                merged.setdefault(event.event_id, event)
            page = query.apply(merged.values())
        else:
            page = await self._store.query(query)

        if not self._query_cache.set(query, page, generation=generation):
            logger.debug("query_page_not_cached", reason="concurrent_write")
        return page

    async def close(self) -> None:
        for store in (self._store, self._fallback_store):
            try:
                await store.close()
            except Exception:  # noqa: BLE001
                logger.warning("store_close_error", store=type(store).__name__, exc_info=True)


def _coerce_inputs(
    subject: Subject | Mapping[str, Any] | None,
    context: EventContext | Mapping[str, Any] | None,
) -> tuple[Subject | None, EventContext | None]:
    try:
        subject_model = (
            Subject.model_validate(dict(subject)) if isinstance(subject, Mapping) else subject
        )
        context_model = (
            EventContext.model_validate(dict(context))
            if isinstance(context, Mapping)
            else context
        )
    except ValidationError as exc:
        raise InvalidEventError(
            "invalid subject or context", details={"errors": exc.errors()}
        ) from exc
    return subject_model, context_model
