from __future__ import annotations

from typing import Any


class AuditGuardError(Exception):
    """Base exception for all auditguard errors.

    Attributes:
        code: Optional machine-readable error code (e.g. ``"INVALID_EVENT"``).
        details: Arbitrary key/value context about the error.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}

    @property
    def is_retryable(self) -> bool:
        """Whether the operation that raised this error can be retried."""
        return False


class ConfigurationError(AuditGuardError): ...


class EventStateError(AuditGuardError): ...


class InvalidEventError(AuditGuardError):
    """Required ingestion input is missing or malformed.

    Raised before any scoring work begins.  Never retryable.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="INVALID_EVENT", details=details)


class AuditIntegrityError(AuditGuardError):
    """Overall stage completeness fell at or below the finalization threshold.

    The event is not finalized.  Callers may retry the whole ingestion.
    """

    def __init__(
        self,
        message: str,
        *,
        completeness: float,
        stage_completeness: dict[str, float] | None = None,
    ) -> None:
        super().__init__(
            message,
            code="INTEGRITY_THRESHOLD",
            details={
                "completeness": completeness,
                "stage_completeness": dict(stage_completeness or {}),
            },
        )
        self.completeness = completeness
        self.stage_completeness = dict(stage_completeness or {})

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True


class SignatureMismatchError(AuditGuardError):
    """A stored event failed HMAC verification.

    Security-relevant finding; kept distinct from ordinary processing errors.
    """

    def __init__(self, event_id: str, reason: str = "signature mismatch") -> None:
        super().__init__(
            f"Integrity verification failed for event {event_id}: {reason}",
            code="SIGNATURE_MISMATCH",
            details={"event_id": event_id, "reason": reason},
        )
        self.event_id = event_id


class StorageFailureError(AuditGuardError):
    """The durable event store rejected or failed to persist an event.

    Retryable; the in-flight event is preserved by the fallback write path.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, code="STORAGE_FAILURE", details=details)

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return True


class StageTimeoutError(AuditGuardError):
    """An analysis stage exceeded its time budget."""

    def __init__(self, stage: str, timeout_seconds: float) -> None:
        super().__init__(
            f"Stage {stage!r} exceeded {timeout_seconds:.2f}s",
            code="STAGE_TIMEOUT",
            details={"stage": stage, "timeout_seconds": timeout_seconds},
        )


class CircuitOpenError(AuditGuardError):
    """Raised when a circuit breaker is open and rejecting calls.

    Not retryable; the caller should wait for the circuit breaker to
    transition to half-open before retrying.
    """

    @property
    def is_retryable(self) -> bool:  # noqa: D102
        return False
