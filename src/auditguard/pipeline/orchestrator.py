"""Fan-out/join execution of the analysis stages."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Sequence
from typing import Any

import structlog
from pydantic import BaseModel, Field

from auditguard.core.constants import StageName
from auditguard.core.exceptions import AuditGuardError
from auditguard.core.models import AnalysisSnapshot, AuditEvent, StageResult
from auditguard.pipeline.integrity import IntegrityCheck, IntegrityValidator
from auditguard.pipeline.stages import AnalysisStage
from auditguard.utils.async_helpers import elapsed_ms, with_timeout

logger = structlog.get_logger(__name__)

NEUTRAL_RISK_SCORE = 0.5

# Fixed merge order; StageName is declared in this order.
MERGE_ORDER: tuple[StageName, ...] = tuple(StageName)

_MERGERS: dict[StageName, Callable[[AuditEvent, dict[str, Any]], AuditEvent]] = {
    StageName.SECURITY_ANALYSIS: AuditEvent.with_security_analysis,
    StageName.COMPLIANCE_CLASSIFICATION: AuditEvent.with_compliance_classification,
    StageName.CRYPTOGRAPHIC_SIGNING: AuditEvent.with_signature,
    StageName.THREAT_DETECTION: AuditEvent.with_threat_detection,
}


class OrchestrationResult(BaseModel):
    """The finalized event plus per-stage diagnostics."""

    event: AuditEvent
    stage_results: list[StageResult] = Field(default_factory=list)
    integrity: IntegrityCheck
    latency_ms: float = 0.0

    @property
    def failed_stages(self) -> list[str]:
        return [r.stage.value for r in self.stage_results if not r.success]


class ParallelAnalysisOrchestrator:
    """Runs independent stages concurrently over one immutable snapshot.

    Each stage gets its own timeout; a failing or slow stage is recorded as
    an error result and never cancels its siblings.  Successful payloads
    are merged in :data:`MERGE_ORDER`, so the final ``version`` does not
    depend on completion order.  The integrity gate runs last.

    Example::

        orchestrator = ParallelAnalysisOrchestrator(
            [SecurityAnalysisStage(), ComplianceClassificationStage(),
             SigningStage(signer), ThreatDetectionStage()],
            timeout_seconds=5.0,
        )
        result = await orchestrator.analyze(snapshot)

    Args:
        stages: One stage per :class:`StageName`; names must be unique.
        timeout_seconds: Budget per stage.
        validator: Integrity gate (defaults to ``completeness > 0.8``).
    """

    def __init__(
        self,
        stages: Sequence[AnalysisStage],
        *,
        timeout_seconds: float = 5.0,
        validator: IntegrityValidator | None = None,
    ) -> None:
        names = [stage.name for stage in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate stage names: {names}")
        self._stages = list(stages)
        self._timeout = timeout_seconds
        self._validator = validator or IntegrityValidator()

    @property
    def stage_names(self) -> list[str]:
        return [stage.name.value for stage in self._stages]

    async def run_stages(self, snapshot: AnalysisSnapshot) -> list[StageResult]:
        """Run every stage concurrently and return one result per stage."""
        outcomes = await asyncio.gather(
            *(self._run_one(stage, snapshot) for stage in self._stages),
            return_exceptions=True,
        )
        results: list[StageResult] = []
        for stage, outcome in zip(self._stages, outcomes):
            if isinstance(outcome, BaseException):
                # Only reachable if the task itself was cancelled.
                results.append(
                    StageResult(stage=stage.name, error=repr(outcome))
                )
                continue
            results.append(outcome)
        return results

    async def analyze(self, snapshot: AnalysisSnapshot) -> OrchestrationResult:
        """Run, merge and gate.

        Raises:
            AuditIntegrityError: If overall completeness is not above the threshold.
        """
        started = time.monotonic()
        results = await self.run_stages(snapshot)
        event, results = self._merge(snapshot.event, results)

        check = self._validator.validate(
            results,
            {stage.name.value: stage.required_fields for stage in self._stages},
        )

        if event.risk_score is None and StageName.SECURITY_ANALYSIS in {
            s.name for s in self._stages
        }:
            # Degraded security analysis contributes the neutral score.
            event = event.model_copy(update={"risk_score": NEUTRAL_RISK_SCORE})

        latency = elapsed_ms(started)
        logger.debug(
            "orchestration_complete",
            event_id=event.event_id,
            version=event.version,
            completeness=round(check.completeness, 4),
            latency_ms=round(latency, 2),
        )
        return OrchestrationResult(
            event=event,
            stage_results=results,
            integrity=check,
            latency_ms=latency,
        )

    async def _run_one(self, stage: AnalysisStage, snapshot: AnalysisSnapshot) -> StageResult:
        started = time.monotonic()
        try:
            data = await with_timeout(
                stage.run(snapshot), self._timeout, stage=stage.name.value
            )
        except Exception as exc:
            logger.warning(
                "stage_failed",
                stage=stage.name.value,
                event_id=snapshot.event.event_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return StageResult(
                stage=stage.name,
                error=str(exc) or type(exc).__name__,
                execution_time_ms=elapsed_ms(started),
            )
        return StageResult(stage=stage.name, data=data, execution_time_ms=elapsed_ms(started))

    def _merge(
        self, event: AuditEvent, results: list[StageResult]
    ) -> tuple[AuditEvent, list[StageResult]]:
        by_stage = {result.stage: result for result in results}
        merged: list[StageResult] = []
        for name in MERGE_ORDER:
            result = by_stage.get(name)
            if result is None:
                continue
            if result.success:
                try:
                    event = _MERGERS[name](event, result.data or {})
                except (AuditGuardError, ValueError, KeyError) as exc:
                    logger.warning(
                        "stage_merge_failed",
                        stage=name.value,
                        event_id=event.event_id,
                        error=str(exc),
                    )
                    result = result.model_copy(
                        update={"data": None, "error": f"merge failed: {exc}"}
                    )
            merged.append(result)
        return event, merged
