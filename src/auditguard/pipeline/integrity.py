"""Completeness gate between orchestration and finalization."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import structlog
from pydantic import BaseModel, Field

from auditguard.core.exceptions import AuditIntegrityError
from auditguard.core.models import StageResult

logger = structlog.get_logger(__name__)

DEFAULT_COMPLETENESS_THRESHOLD = 0.8


def stage_completeness(required_fields: Sequence[str], data: Mapping[str, Any] | None) -> float:
    """Fraction of *required_fields* present in *data* with a non-``None`` value.

    A failed stage (no data) scores ``0.0``; a stage that declares no
    required fields scores ``1.0`` whenever it produced data.
    """
    if data is None:
        return 0.0
    if not required_fields:
        return 1.0
    present = sum(1 for name in required_fields if data.get(name) is not None)
    return present / len(required_fields)


class IntegrityCheck(BaseModel):
    completeness: float = Field(..., ge=0.0, le=1.0)
    stage_completeness: dict[str, float] = Field(default_factory=dict)
    threshold: float

    @property
    def passed(self) -> bool:
        return self.completeness > self.threshold


class IntegrityValidator:
    """Scores stage results and enforces ``completeness > threshold``.

    Args:
        threshold: Overall completeness must be strictly greater than this.
    """

    def __init__(self, threshold: float = DEFAULT_COMPLETENESS_THRESHOLD) -> None:
        self._threshold = threshold

    @property
    def threshold(self) -> float:
        return self._threshold

    def evaluate(
        self,
        results: Sequence[StageResult],
        required_fields: Mapping[str, Sequence[str]],
    ) -> IntegrityCheck:
        per_stage = {
            result.stage.value: stage_completeness(
                required_fields.get(result.stage.value, ()),
                result.data if result.success else None,
            )
            for result in results
        }
        overall = sum(per_stage.values()) / len(per_stage) if per_stage else 0.0
        return IntegrityCheck(
            completeness=overall,
            stage_completeness=per_stage,
            threshold=self._threshold,
        )

    def validate(
        self,
        results: Sequence[StageResult],
        required_fields: Mapping[str, Sequence[str]],
    ) -> IntegrityCheck:
        """Evaluate and raise when the gate is not met.

        Raises:
            AuditIntegrityError: If overall completeness is ``<= threshold``.
        """
        check = self.evaluate(results, required_fields)
        if not check.passed:
            logger.warning(
                "integrity_threshold_breached",
                completeness=round(check.completeness, 4),
                threshold=self._threshold,
                stage_completeness=check.stage_completeness,
            )
            raise AuditIntegrityError(
                f"analysis completeness {check.completeness:.2f} "
                f"is not above {self._threshold:.2f}",
                completeness=check.completeness,
                stage_completeness=check.stage_completeness,
            )
        return check
