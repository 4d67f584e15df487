"""auditguard: risk scoring, threat detection and tamper-evident audit events."""

from auditguard.__version__ import __version__

from auditguard.bus import (
    BusMessage,
    EventBus,
    InMemorySubscriber,
    LogSubscriber,
    Subscriber,
    WebhookSubscriber,
)
from auditguard.classification import EventClassifier, sanitize_details
from auditguard.core.config import EngineConfig, RiskWeights
from auditguard.core.constants import (
    BusTopic,
    ComplianceFlag,
    EventCategory,
    EventType,
    Severity,
    StageName,
    ThreatType,
)
from auditguard.core.exceptions import (
    AuditGuardError,
    AuditIntegrityError,
    CircuitOpenError,
    ConfigurationError,
    EventStateError,
    InvalidEventError,
    SignatureMismatchError,
    StageTimeoutError,
    StorageFailureError,
)
from auditguard.core.models import (
    ActivityRecord,
    AnalysisSnapshot,
    AuditEvent,
    BehavioralBaseline,
    EventContext,
    GeoLocation,
    IntegrityReport,
    RecordResult,
    RiskAssessment,
    StageResult,
    Subject,
    ThreatIndicator,
)
from auditguard.crypto import (
    EnvSecretsProvider,
    EventSigner,
    SecretsProvider,
    StaticSecretsProvider,
)
from auditguard.pipeline import ParallelAnalysisOrchestrator
from auditguard.risk import RiskCalculator
from auditguard.service import AuditService
from auditguard.stores import (
    AuditQuery,
    AuditStore,
    BaselineProvider,
    FileAuditStore,
    InMemoryAuditStore,
    InMemoryBaselineProvider,
    QueryPage,
)
from auditguard.utils.logging import configure_logging

__all__ = [
    "__version__",
    # Service
    "AuditService",
    "EngineConfig",
    "RiskWeights",
    "configure_logging",
    # Models
    "ActivityRecord",
    "AnalysisSnapshot",
    "AuditEvent",
    "BehavioralBaseline",
    "EventContext",
    "GeoLocation",
    "IntegrityReport",
    "RecordResult",
    "RiskAssessment",
    "StageResult",
    "Subject",
    "ThreatIndicator",
    # Constants
    "BusTopic",
    "ComplianceFlag",
    "EventCategory",
    "EventType",
    "Severity",
    "StageName",
    "ThreatType",
    # Exceptions
    "AuditGuardError",
    "AuditIntegrityError",
    "CircuitOpenError",
    "ConfigurationError",
    "EventStateError",
    "InvalidEventError",
    "SignatureMismatchError",
    "StageTimeoutError",
    "StorageFailureError",
    # Components
    "EventClassifier",
    "EventSigner",
    "ParallelAnalysisOrchestrator",
    "RiskCalculator",
    "sanitize_details",
    # Collaborators
    "AuditQuery",
    "AuditStore",
    "BaselineProvider",
    "BusMessage",
    "EnvSecretsProvider",
    "EventBus",
    "FileAuditStore",
    "InMemoryAuditStore",
    "InMemoryBaselineProvider",
    "InMemorySubscriber",
    "LogSubscriber",
    "QueryPage",
    "SecretsProvider",
    "StaticSecretsProvider",
    "Subscriber",
    "WebhookSubscriber",
]
