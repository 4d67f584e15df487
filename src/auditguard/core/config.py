from __future__ import annotations

import math
import os
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class RiskWeights(BaseModel):
    """Per-factor weights of the composite risk score.

    The defaults are illustrative rather than tuned for a real threat model;
    override them per deployment.  Weights must sum to ``1.0``.
    """

    severity: float = Field(default=0.25, ge=0.0, le=1.0)
    behavioral: float = Field(default=0.30, ge=0.0, le=1.0)
    temporal: float = Field(default=0.10, ge=0.0, le=1.0)
    geographic: float = Field(default=0.15, ge=0.0, le=1.0)
    device: float = Field(default=0.10, ge=0.0, le=1.0)
    compliance: float = Field(default=0.10, ge=0.0, le=1.0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_sum(self) -> RiskWeights:
        total = sum(self.as_dict().values())
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"risk weights must sum to 1.0, got {total:.6f}")
        return self

    def as_dict(self) -> dict[str, float]:
        return {
            "severity": self.severity,
            "behavioral": self.behavioral,
            "temporal": self.temporal,
            "geographic": self.geographic,
            "device": self.device,
            "compliance": self.compliance,
        }


class EngineConfig(BaseModel):
    risk_weights: RiskWeights = Field(default_factory=RiskWeights)
    impossible_travel_kmh: float = Field(default=1000.0, gt=0.0)
    completeness_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    stage_timeout_seconds: float = Field(default=5.0, gt=0.0, le=300.0)
    risk_cache_ttl_seconds: float = Field(default=1800.0, ge=0.0)
    risk_cache_max_size: int = Field(default=10000, ge=1)
    query_cache_ttl_seconds: float = Field(default=60.0, ge=0.0)
    recent_window_hours: int = Field(default=24, ge=1, le=24 * 30)
    recent_window_limit: int = Field(default=50, ge=1, le=10000)
    baseline_window_days: int = Field(default=30, ge=1, le=365)
    baseline_top_n: int = Field(default=5, ge=1, le=24)
    failure_threshold: int = Field(default=5, ge=1, le=1000)
    """Consecutive ingestion failures before the circuit breaker opens."""
    recovery_timeout_seconds: float = Field(default=30.0, ge=0.0)
    storage_max_retries: int = Field(default=2, ge=0, le=10)
    storage_backoff_base: float = Field(default=0.1, ge=0.0)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Create an :class:`EngineConfig` from ``AUDITGUARD_*`` environment variables.

        Reads the following env vars (all optional):

        * ``AUDITGUARD_IMPOSSIBLE_TRAVEL_KMH`` → ``impossible_travel_kmh``
        * ``AUDITGUARD_COMPLETENESS_THRESHOLD`` → ``completeness_threshold``
        * ``AUDITGUARD_STAGE_TIMEOUT`` → ``stage_timeout_seconds``
        * ``AUDITGUARD_RISK_CACHE_TTL`` → ``risk_cache_ttl_seconds``
        * ``AUDITGUARD_QUERY_CACHE_TTL`` → ``query_cache_ttl_seconds``
        * ``AUDITGUARD_LOG_LEVEL`` → ``log_level``

        Any variable that is not set or is empty is left at its default value.
        """
        kwargs: dict[str, Any] = {}

        float_fields = {
            "AUDITGUARD_IMPOSSIBLE_TRAVEL_KMH": "impossible_travel_kmh",
            "AUDITGUARD_COMPLETENESS_THRESHOLD": "completeness_threshold",
            "AUDITGUARD_STAGE_TIMEOUT": "stage_timeout_seconds",
            "AUDITGUARD_RISK_CACHE_TTL": "risk_cache_ttl_seconds",
            "AUDITGUARD_QUERY_CACHE_TTL": "query_cache_ttl_seconds",
        }
        for env_name, field_name in float_fields.items():
            raw = os.environ.get(env_name)
            if raw:
                kwargs[field_name] = float(raw)

        log_level = os.environ.get("AUDITGUARD_LOG_LEVEL")
        if log_level:
            kwargs["log_level"] = log_level.upper()

        return cls(**kwargs)
