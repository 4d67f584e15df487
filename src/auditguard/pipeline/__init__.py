from auditguard.pipeline.integrity import (
    IntegrityCheck,
    IntegrityValidator,
    stage_completeness,
)
from auditguard.pipeline.orchestrator import (
    MERGE_ORDER,
    NEUTRAL_RISK_SCORE,
    OrchestrationResult,
    ParallelAnalysisOrchestrator,
)
from auditguard.pipeline.stages import (
    AnalysisStage,
    ComplianceClassificationStage,
    SecurityAnalysisStage,
    SigningStage,
    ThreatDetectionStage,
)

__all__ = [
    "MERGE_ORDER",
    "NEUTRAL_RISK_SCORE",
    "AnalysisStage",
    "ComplianceClassificationStage",
    "IntegrityCheck",
    "IntegrityValidator",
    "OrchestrationResult",
    "ParallelAnalysisOrchestrator",
    "SecurityAnalysisStage",
    "SigningStage",
    "ThreatDetectionStage",
    "stage_completeness",
]
