from .enums import (
    ContentType,
    EventType,
    Framework,
    Phase,
    RunStatus,
    ServerCategory,
    Severity,
    ToolCallStatus,
)
from .schemas import (
    AssessmentPlan,
    Chunk,
    ChunkMetadata,
    ComparisonResult,
    ComplianceReport,
    ComplianceRequirement,
    ComplianceScore,
    Connection,
    Evidence,
    ExtractionResult,
    GapFinding,
    JsonPayload,
    RemediationTask,
    RequirementContext,
    SearchFilters,
    SearchResult,
    TextPayload,
    ToolCallRecord,
    ToolDescriptor,
    VectorRecord,
)
from .state import AssessmentRun, InvalidTransitionError, RunFinalizedError, RunSnapshot

__all__ = [
    "AssessmentPlan",
    "AssessmentRun",
    "Chunk",
    "ChunkMetadata",
    "ComparisonResult",
    "ComplianceReport",
    "ComplianceRequirement",
    "ComplianceScore",
    "Connection",
    "ContentType",
    "EventType",
    "Evidence",
    "ExtractionResult",
    "Framework",
    "GapFinding",
    "InvalidTransitionError",
    "JsonPayload",
    "Phase",
    "RemediationTask",
    "RequirementContext",
    "RunFinalizedError",
    "RunSnapshot",
    "RunStatus",
    "SearchFilters",
    "SearchResult",
    "ServerCategory",
    "Severity",
    "TextPayload",
    "ToolCallRecord",
    "ToolDescriptor",
    "VectorRecord",
]
