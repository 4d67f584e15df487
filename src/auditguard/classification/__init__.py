from auditguard.classification.classifier import (
    EventClassifier,
    category_for,
    compliance_flags_for,
    encryption_required_for,
    retention_days_for,
    sanitize_details,
    severity_for,
)
from auditguard.classification.compliance import (
    DataClassification,
    applicable_regulations,
    classify_compliance,
    data_classification,
)

__all__ = [
    "DataClassification",
    "EventClassifier",
    "applicable_regulations",
    "category_for",
    "classify_compliance",
    "compliance_flags_for",
    "data_classification",
    "encryption_required_for",
    "retention_days_for",
    "sanitize_details",
    "severity_for",
]
