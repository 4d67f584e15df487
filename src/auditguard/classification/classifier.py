"""Event classification: raw ingestion input to a freshly built :class:`AuditEvent`.

Category, severity, compliance flags, encryption and retention are pure
lookups keyed by :class:`EventType`.  Types outside the enum fall to the
documented default arm: ``system`` / ``medium`` / no flags / no encryption /
180 days (six months).
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import structlog

from auditguard.core.constants import (
    REDACTION_MARKER,
    ComplianceFlag,
    EventCategory,
    EventType,
    Severity,
)
from auditguard.core.exceptions import InvalidEventError
from auditguard.core.models import AuditEvent, EventContext, Subject, utc_now

logger = structlog.get_logger(__name__)

DEFAULT_CATEGORY = EventCategory.SYSTEM
DEFAULT_SEVERITY = Severity.MEDIUM
DEFAULT_RETENTION_DAYS = 180

_E = EventType
_C = EventCategory
_S = Severity
_F = ComplianceFlag

CATEGORY_TABLE: dict[EventType, EventCategory] = {
    _E.USER_LOGIN: _C.AUTHENTICATION,
    _E.USER_LOGOUT: _C.AUTHENTICATION,
    _E.FAILED_AUTHENTICATION: _C.AUTHENTICATION,
    _E.PASSWORD_CHANGED: _C.AUTHENTICATION,
    _E.MFA_ENABLED: _C.AUTHENTICATION,
    _E.MFA_DISABLED: _C.AUTHENTICATION,
    _E.SESSION_CREATED: _C.AUTHENTICATION,
    _E.SESSION_TERMINATED: _C.AUTHENTICATION,
    _E.ACCOUNT_LOCKED: _C.AUTHENTICATION,
    _E.PERMISSION_GRANTED: _C.AUTHORIZATION,
    _E.PERMISSION_REVOKED: _C.AUTHORIZATION,
    _E.ROLE_CHANGED: _C.AUTHORIZATION,
    _E.ACCESS_DENIED: _C.AUTHORIZATION,
    _E.PRIVILEGE_ESCALATION: _C.SECURITY,
    _E.SECURITY_ALERT: _C.SECURITY,
    _E.SUSPICIOUS_ACTIVITY: _C.SECURITY,
    _E.API_KEY_CREATED: _C.SECURITY,
    _E.API_KEY_REVOKED: _C.SECURITY,
    _E.DATA_ACCESSED: _C.DATA,
    _E.DATA_MODIFIED: _C.DATA,
    _E.DATA_DELETED: _C.DATA,
    _E.DATA_EXPORTED: _C.DATA,
    _E.PERSONAL_DATA_ACCESSED: _C.DATA,
    _E.PAYMENT_DATA_ACCESSED: _C.DATA,
    _E.CONFIGURATION_CHANGED: _C.SYSTEM,
    _E.SYSTEM_STARTUP: _C.SYSTEM,
    _E.SYSTEM_SHUTDOWN: _C.SYSTEM,
    _E.BACKUP_CREATED: _C.SYSTEM,
    _E.BACKUP_RESTORED: _C.SYSTEM,
}

SEVERITY_TABLE: dict[EventType, Severity] = {
    _E.USER_LOGIN: _S.LOW,
    _E.USER_LOGOUT: _S.LOW,
    _E.FAILED_AUTHENTICATION: _S.MEDIUM,
    _E.PASSWORD_CHANGED: _S.MEDIUM,
    _E.MFA_ENABLED: _S.LOW,
    _E.MFA_DISABLED: _S.HIGH,
    _E.SESSION_CREATED: _S.LOW,
    _E.SESSION_TERMINATED: _S.LOW,
    _E.ACCOUNT_LOCKED: _S.HIGH,
    _E.PERMISSION_GRANTED: _S.MEDIUM,
    _E.PERMISSION_REVOKED: _S.MEDIUM,
    _E.ROLE_CHANGED: _S.HIGH,
    _E.ACCESS_DENIED: _S.MEDIUM,
    _E.PRIVILEGE_ESCALATION: _S.CRITICAL,
    _E.SECURITY_ALERT: _S.HIGH,
    _E.SUSPICIOUS_ACTIVITY: _S.HIGH,
    _E.API_KEY_CREATED: _S.MEDIUM,
    _E.API_KEY_REVOKED: _S.MEDIUM,
    _E.DATA_ACCESSED: _S.LOW,
    _E.DATA_MODIFIED: _S.MEDIUM,
    _E.DATA_DELETED: _S.HIGH,
    _E.DATA_EXPORTED: _S.HIGH,
    _E.PERSONAL_DATA_ACCESSED: _S.MEDIUM,
    _E.PAYMENT_DATA_ACCESSED: _S.HIGH,
    _E.CONFIGURATION_CHANGED: _S.MEDIUM,
    _E.SYSTEM_STARTUP: _S.LOW,
    _E.SYSTEM_SHUTDOWN: _S.MEDIUM,
    _E.BACKUP_CREATED: _S.LOW,
    _E.BACKUP_RESTORED: _S.HIGH,
}

COMPLIANCE_TABLE: dict[EventType, tuple[ComplianceFlag, ...]] = {
    _E.USER_LOGIN: (),
    _E.USER_LOGOUT: (),
    _E.FAILED_AUTHENTICATION: (),
    _E.PASSWORD_CHANGED: (),
    _E.MFA_ENABLED: (),
    _E.MFA_DISABLED: (_F.SOX_ACCESS_CONTROL,),
    _E.SESSION_CREATED: (),
    _E.SESSION_TERMINATED: (),
    _E.ACCOUNT_LOCKED: (_F.SECURITY_INCIDENT,),
    _E.PERMISSION_GRANTED: (_F.SOX_ACCESS_CONTROL,),
    _E.PERMISSION_REVOKED: (_F.SOX_ACCESS_CONTROL,),
    _E.ROLE_CHANGED: (_F.SOX_ACCESS_CONTROL,),
    _E.ACCESS_DENIED: (),
    _E.PRIVILEGE_ESCALATION: (_F.SOX_ACCESS_CONTROL, _F.SECURITY_INCIDENT),
    _E.SECURITY_ALERT: (_F.SECURITY_INCIDENT,),
    _E.SUSPICIOUS_ACTIVITY: (_F.SECURITY_INCIDENT,),
    _E.API_KEY_CREATED: (_F.SOX_ACCESS_CONTROL,),
    _E.API_KEY_REVOKED: (_F.SOX_ACCESS_CONTROL,),
    _E.DATA_ACCESSED: (_F.SENSITIVE_DATA_ACCESS,),
    _E.DATA_MODIFIED: (_F.GDPR_PERSONAL_DATA,),
    _E.DATA_DELETED: (_F.GDPR_PERSONAL_DATA, _F.CCPA_PERSONAL_INFORMATION),
    _E.DATA_EXPORTED: (
        _F.GDPR_PERSONAL_DATA,
        _F.CCPA_PERSONAL_INFORMATION,
        _F.SENSITIVE_DATA_ACCESS,
    ),
    _E.PERSONAL_DATA_ACCESSED: (_F.GDPR_PERSONAL_DATA, _F.CCPA_PERSONAL_INFORMATION),
    _E.PAYMENT_DATA_ACCESSED: (_F.PCI_DSS_CARDHOLDER_DATA, _F.SENSITIVE_DATA_ACCESS),
    _E.CONFIGURATION_CHANGED: (_F.SOX_CHANGE_MANAGEMENT,),
    _E.SYSTEM_STARTUP: (),
    _E.SYSTEM_SHUTDOWN: (),
    _E.BACKUP_CREATED: (),
    _E.BACKUP_RESTORED: (_F.SOX_CHANGE_MANAGEMENT,),
}

ENCRYPTION_REQUIRED: frozenset[EventType] = frozenset(
    {
        _E.PASSWORD_CHANGED,
        _E.API_KEY_CREATED,
        _E.DATA_ACCESSED,
        _E.DATA_MODIFIED,
        _E.DATA_DELETED,
        _E.DATA_EXPORTED,
        _E.PERSONAL_DATA_ACCESSED,
        _E.PAYMENT_DATA_ACCESSED,
    }
)

RETENTION_DAYS: dict[EventCategory, int] = {
    _C.AUTHENTICATION: 365,
    _C.AUTHORIZATION: 3 * 365,
    _C.SECURITY: 7 * 365,
    _C.DATA: 7 * 365,
    _C.SYSTEM: DEFAULT_RETENTION_DAYS,
}

SENSITIVE_FIELDS: frozenset[str] = frozenset(
    {
        "password",
        "password_confirmation",
        "current_password",
        "ssn",
        "social_security_number",
        "credit_card",
        "credit_card_number",
        "card_number",
        "cvv",
        "api_key",
        "secret",
        "token",
        "access_token",
        "refresh_token",
        "private_key",
    }
)


def resolve_event_type(event_type: str) -> EventType | None:
    """Return the enum member for *event_type*, or ``None`` for unknown types."""
    try:
        return EventType(event_type)
    except ValueError:
        return None


def category_for(event_type: str) -> EventCategory:
    known = resolve_event_type(event_type)
    return CATEGORY_TABLE[known] if known is not None else DEFAULT_CATEGORY


def severity_for(event_type: str) -> Severity:
    known = resolve_event_type(event_type)
    return SEVERITY_TABLE[known] if known is not None else DEFAULT_SEVERITY


def compliance_flags_for(event_type: str) -> tuple[ComplianceFlag, ...]:
    known = resolve_event_type(event_type)
    return COMPLIANCE_TABLE[known] if known is not None else ()


def encryption_required_for(event_type: str) -> bool:
    known = resolve_event_type(event_type)
    return known in ENCRYPTION_REQUIRED if known is not None else False


def retention_days_for(event_type: str) -> int:
    known = resolve_event_type(event_type)
    if known is None:
        return DEFAULT_RETENTION_DAYS
    return RETENTION_DAYS[CATEGORY_TABLE[known]]


def sanitize_details(details: Mapping[str, Any]) -> dict[str, Any]:
    """Replace the values of sensitive keys with the redaction marker.

    Keys are coerced to ``str``.  Matching is case-insensitive and recurses
    into nested mappings and lists of mappings.  The input is not modified.
    """
    sanitized: dict[str, Any] = {}
    for raw_key, value in details.items():
        key = str(raw_key)
        if key.lower() in SENSITIVE_FIELDS:
            sanitized[key] = REDACTION_MARKER
        elif isinstance(value, Mapping):
            sanitized[key] = sanitize_details(value)
        elif isinstance(value, list):
            sanitized[key] = [
                sanitize_details(item) if isinstance(item, Mapping) else item
                for item in value
            ]
        else:
            sanitized[key] = value
    return sanitized


class EventClassifier:
    """Builds classified :class:`AuditEvent` values from raw ingestion input."""

    def classify(
        self,
        event_type: str,
        subject: Subject | None,
        details: Mapping[str, Any] | None,
        context: EventContext | None = None,
        *,
        timestamp: datetime | None = None,
    ) -> AuditEvent:
        """Validate, sanitize and classify.

        Aware timestamps are normalized to UTC.

        Raises:
            InvalidEventError: If *event_type* is empty, *details* is ``None``
                or *timestamp* has no timezone.
        """
        if not event_type or not str(event_type).strip():
            raise InvalidEventError("event_type is required")
        if details is None:
            raise InvalidEventError(
                "details are required", details={"event_type": event_type}
            )
        if not isinstance(details, Mapping):
            raise InvalidEventError(
                "details must be a mapping",
                details={"event_type": event_type, "type": type(details).__name__},
            )

        if timestamp is not None and timestamp.utcoffset() is None:
            raise InvalidEventError(
                "timestamp must be timezone-aware",
                details={"event_type": event_type, "timestamp": timestamp.isoformat()},
            )

        event_type = str(event_type).strip()
        ctx = context or EventContext()
        if resolve_event_type(event_type) is None:
            logger.info("unknown_event_type_defaulted", event_type=event_type)

        occurred_at = timestamp.astimezone(timezone.utc) if timestamp else utc_now()
        return AuditEvent(
            event_type=event_type,
            timestamp=occurred_at,
            subject_id=subject.subject_id if subject else None,
            subject_role=subject.role if subject else None,
            session_id=ctx.session_id,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
            geolocation=ctx.geolocation,
            device_fingerprint=ctx.device_fingerprint,
            category=category_for(event_type),
            severity=severity_for(event_type),
            details=sanitize_details(details),
            compliance_flags=compliance_flags_for(event_type),
            encryption_required=encryption_required_for(event_type),
            retention_period_days=retention_days_for(event_type),
        )
