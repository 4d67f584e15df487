from __future__ import annotations

from enum import StrEnum


class EventType(StrEnum):
    # Authentication
    USER_LOGIN = "user_login"
    USER_LOGOUT = "user_logout"
    FAILED_AUTHENTICATION = "failed_authentication"
    PASSWORD_CHANGED = "password_changed"
    MFA_ENABLED = "mfa_enabled"
    MFA_DISABLED = "mfa_disabled"
    SESSION_CREATED = "session_created"
    SESSION_TERMINATED = "session_terminated"
    ACCOUNT_LOCKED = "account_locked"

    # Authorization
    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_REVOKED = "permission_revoked"
    ROLE_CHANGED = "role_changed"
    ACCESS_DENIED = "access_denied"

    # Security
    PRIVILEGE_ESCALATION = "privilege_escalation"
    SECURITY_ALERT = "security_alert"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    API_KEY_CREATED = "api_key_created"
    API_KEY_REVOKED = "api_key_revoked"

    # Data
    DATA_ACCESSED = "data_accessed"
    DATA_MODIFIED = "data_modified"
    DATA_DELETED = "data_deleted"
    DATA_EXPORTED = "data_exported"
    PERSONAL_DATA_ACCESSED = "personal_data_accessed"
    PAYMENT_DATA_ACCESSED = "payment_data_accessed"

    # System
    CONFIGURATION_CHANGED = "configuration_changed"
    SYSTEM_STARTUP = "system_startup"
    SYSTEM_SHUTDOWN = "system_shutdown"
    BACKUP_CREATED = "backup_created"
    BACKUP_RESTORED = "backup_restored"


class EventCategory(StrEnum):
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    SECURITY = "security"
    DATA = "data"
    SYSTEM = "system"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class ComplianceFlag(StrEnum):
    GDPR_PERSONAL_DATA = "gdpr_personal_data"
    CCPA_PERSONAL_INFORMATION = "ccpa_personal_information"
    SENSITIVE_DATA_ACCESS = "sensitive_data_access"
    PCI_DSS_CARDHOLDER_DATA = "pci_dss_cardholder_data"
    SOX_ACCESS_CONTROL = "sox_access_control"
    SOX_CHANGE_MANAGEMENT = "sox_change_management"
    SECURITY_INCIDENT = "security_incident"


class ThreatType(StrEnum):
    IMPOSSIBLE_TRAVEL = "impossible_travel"
    BRUTE_FORCE = "brute_force"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    SESSION_HIJACKING = "session_hijacking"
    DATA_EXFILTRATION = "data_exfiltration"
    AUTOMATED_ACTIVITY = "automated_activity"
    BEHAVIORAL_ANOMALY = "behavioral_anomaly"


class StageName(StrEnum):
    """Analysis stages, listed in the fixed merge order."""

    SECURITY_ANALYSIS = "security_analysis"
    COMPLIANCE_CLASSIFICATION = "compliance_classification"
    CRYPTOGRAPHIC_SIGNING = "cryptographic_signing"
    THREAT_DETECTION = "threat_detection"


class BusTopic(StrEnum):
    AUDIT_EVENT_RECORDED = "audit_event_recorded"
    SECURITY_THREAT_DETECTED = "security_threat_detected"
    COMPLIANCE_EVENT_RECORDED = "compliance_event_recorded"
    AUDIT_INTEGRITY_FAILURE = "audit_integrity_failure"
    AUDIT_STORAGE_FAILURE = "audit_storage_failure"


REDACTION_MARKER = "[REDACTED]"
