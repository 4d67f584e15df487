"""Regulatory detail derived from an event's compliance flags."""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum
from typing import Any

from auditguard.classification.classifier import (
    encryption_required_for,
    retention_days_for,
)
from auditguard.core.constants import ComplianceFlag
from auditguard.core.models import AuditEvent


class DataClassification(StrEnum):
    RESTRICTED = "restricted"
    CONFIDENTIAL = "confidential"
    INTERNAL = "internal"


REGULATIONS: dict[ComplianceFlag, str] = {
    ComplianceFlag.GDPR_PERSONAL_DATA: "GDPR",
    ComplianceFlag.CCPA_PERSONAL_INFORMATION: "CCPA",
    ComplianceFlag.PCI_DSS_CARDHOLDER_DATA: "PCI-DSS",
    ComplianceFlag.SOX_ACCESS_CONTROL: "SOX",
    ComplianceFlag.SOX_CHANGE_MANAGEMENT: "SOX",
}

_RESTRICTED_FLAGS = frozenset(
    {ComplianceFlag.PCI_DSS_CARDHOLDER_DATA, ComplianceFlag.SENSITIVE_DATA_ACCESS}
)
_CONFIDENTIAL_FLAGS = frozenset(
    {ComplianceFlag.GDPR_PERSONAL_DATA, ComplianceFlag.CCPA_PERSONAL_INFORMATION}
)


def applicable_regulations(flags: Iterable[ComplianceFlag]) -> list[str]:
    """Sorted, de-duplicated regulation names implied by *flags*."""
    return sorted({REGULATIONS[flag] for flag in flags if flag in REGULATIONS})


def data_classification(
    flags: Iterable[ComplianceFlag], encryption_required: bool
) -> DataClassification:
    flag_set = set(flags)
    if flag_set & _RESTRICTED_FLAGS:
        return DataClassification.RESTRICTED
    if flag_set & _CONFIDENTIAL_FLAGS or encryption_required:
        return DataClassification.CONFIDENTIAL
    return DataClassification.INTERNAL


def classify_compliance(event: AuditEvent) -> dict[str, Any]:
    """Confirm the classifier's compliance decisions for an already classified event.

    Retention and encryption are re-derived from the event type; a
    disagreement with the values stamped on the event is reported rather
    than silently corrected.
    """
    expected_retention = retention_days_for(event.event_type)
    expected_encryption = encryption_required_for(event.event_type)
    return {
        "compliance_flags": [flag.value for flag in event.compliance_flags],
        "applicable_regulations": applicable_regulations(event.compliance_flags),
        "data_classification": data_classification(
            event.compliance_flags, event.encryption_required
        ).value,
        "retention_period_days": expected_retention,
        "retention_confirmed": expected_retention == event.retention_period_days,
        "encryption_required": expected_encryption,
        "encryption_confirmed": expected_encryption == event.encryption_required,
    }
