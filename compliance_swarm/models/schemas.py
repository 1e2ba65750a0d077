"""
Pydantic models for every structured record that flows through the
assessment pipeline.

Sections:
  - Retrieval     → Chunk, VectorRecord, SearchResult, SearchFilters
  - Tool calls    → ToolPayload (tagged json/text), ToolCallRecord
  - Extraction    → Evidence, ExtractionResult
  - Analysis      → ComplianceRequirement, RequirementContext, GapFinding,
                    RemediationTask, AssessmentPlan
  - Report        → ComplianceReport and its parts, ComparisonResult
  - LLM responses → GapAnalysisResponse, RemediationResponse
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .enums import ContentType, Severity, ToolCallStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_severity(value: Any) -> Severity:
    """Map loose LLM severity strings onto the enum, defaulting to medium."""
    if isinstance(value, Severity):
        return value
    try:
        return Severity(str(value).strip().lower())
    except ValueError:
        return Severity.MEDIUM


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys while keeping snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Retrieval ────────────────────────────────────────────


class ChunkMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    type: ContentType = ContentType.DOCUMENTATION
    framework: Optional[str] = None
    requirement_code: Optional[str] = None
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    chunk_index: int = 0
    total_chunks: int = 1

    @model_validator(mode="after")
    def _index_within_total(self) -> "ChunkMetadata":
        if not 0 <= self.chunk_index < self.total_chunks:
            raise ValueError(
                f"chunk_index {self.chunk_index} out of range for total_chunks {self.total_chunks}"
            )
        return self


class Chunk(BaseModel):
    """A bounded, immutable unit of text ready for embedding."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    metadata: ChunkMetadata


class VectorRecord(BaseModel):
    chunk: Chunk
    embedding: list[float]

    @property
    def dimension(self) -> int:
        return len(self.embedding)


class SearchResult(BaseModel):
    chunk: Chunk
    similarity: float


class SearchFilters(BaseModel):
    """Exact-match metadata filters; unset fields do not constrain."""

    framework: Optional[str] = None
    type: Optional[ContentType] = None
    source: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.framework is None and self.type is None and self.source is None

    def matches(self, metadata: ChunkMetadata) -> bool:
        if self.framework is not None and metadata.framework != self.framework:
            return False
        if self.type is not None and metadata.type != self.type:
            return False
        if self.source is not None and metadata.source != self.source:
            return False
        return True

    def as_dict(self) -> dict[str, str]:
        return {
            k: (v.value if isinstance(v, ContentType) else v)
            for k, v in self.model_dump().items()
            if v is not None
        }


# ── Tool calls ───────────────────────────────────────────


class JsonPayload(BaseModel):
    kind: Literal["json"] = "json"
    data: Union[dict[str, Any], list[Any]]


class TextPayload(BaseModel):
    kind: Literal["text"] = "text"
    text: str


ToolPayload = Annotated[Union[JsonPayload, TextPayload], Field(discriminator="kind")]


class ToolDescriptor(BaseModel):
    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=dict)


class ToolCallRecord(BaseModel):
    """Outcome of one tool invocation; success payload or error, never dropped."""

    server: str
    tool: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    status: ToolCallStatus
    duration_ms: float = 0.0
    result: Optional[ToolPayload] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class Connection(BaseModel):
    """A user's live link to one tool server. Credentials never enter run state."""

    server: str
    credentials: dict[str, str] = Field(default_factory=dict, repr=False)
    url: Optional[str] = None  # overrides the registry endpoint


# ── Extraction ───────────────────────────────────────────


class Evidence(BaseModel):
    type: str
    source: str
    content: str
    file_path: Optional[str] = None
    line_number: Optional[int] = None
    url: Optional[str] = None


class ExtractionResult(BaseModel):
    source: str
    agent: str
    payload: dict[str, ToolPayload] = Field(default_factory=dict)
    evidence: list[Evidence] = Field(default_factory=list)
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def succeeded(self) -> bool:
        return self.error is None


# ── Analysis ─────────────────────────────────────────────


class ComplianceRequirement(BaseModel):
    code: str
    title: str
    description: str
    category: str
    framework: str
    priority: float = 0.5


class RequirementContext(BaseModel):
    """A requirement plus the regulation text retrieved for it."""

    requirement: ComplianceRequirement
    chunks: list[SearchResult] = Field(default_factory=list)
    final_query: str = ""
    iterations: int = 0
    corrections: list[str] = Field(default_factory=list)


class GapFinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    requirement_code: str
    category: str
    severity: Severity = Severity.MEDIUM
    title: str
    description: str
    evidence: list[Evidence] = Field(default_factory=list)
    recommendation: Optional[str] = None


class RemediationTask(CamelModel):
    finding_id: str
    title: str
    description: str = ""
    priority: Severity = Severity.MEDIUM
    steps: list[str] = Field(default_factory=list)
    estimated_effort: str = ""
    external_ticket_id: Optional[str] = None
    external_ticket_url: Optional[str] = None


class FocusArea(CamelModel):
    category: str
    requirements: list[str] = Field(default_factory=list)
    priority: str = "medium"


class ExtractionStrategy(CamelModel):
    data_sources: list[str] = Field(default_factory=list)
    key_metrics: list[str] = Field(default_factory=list)
    evidence_types: list[str] = Field(default_factory=list)


class AssessmentPlan(CamelModel):
    """Structured plan; validates the planning LLM's camelCase JSON directly."""

    framework: str = ""
    objectives: list[str] = Field(default_factory=list)
    focus_areas: list[FocusArea] = Field(default_factory=list)
    extraction_strategy: ExtractionStrategy = Field(default_factory=ExtractionStrategy)
    timeline: str = ""
    success_criteria: list[str] = Field(default_factory=list)

    @field_validator("objectives", "success_criteria", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value


# ── Report ───────────────────────────────────────────────


class ReportEvidence(CamelModel):
    source: str
    type: str = ""
    citation: str
    quote: str = ""


class ReportSection(CamelModel):
    title: str
    content: str
    evidence: list[ReportEvidence] = Field(default_factory=list)


class ReportFinding(CamelModel):
    title: str
    description: str
    severity: Severity
    requirement_code: str = ""
    evidence: list[ReportEvidence] = Field(default_factory=list)
    recommendation: str = ""


class ComplianceScore(CamelModel):
    overall: int = Field(ge=0, le=100)
    by_category: dict[str, int] = Field(default_factory=dict)


class ReportMetadata(CamelModel):
    framework: str
    generated_at: datetime = Field(default_factory=_utcnow)
    data_sources: list[str] = Field(default_factory=list)
    extraction_agents: list[str] = Field(default_factory=list)


class ComplianceReport(CamelModel):
    executive_summary: str
    sections: list[ReportSection] = Field(default_factory=list)
    findings: list[ReportFinding] = Field(default_factory=list)
    compliance_score: ComplianceScore
    remediation_plan: list[RemediationTask] = Field(default_factory=list)
    metadata: ReportMetadata


class ComparisonResult(CamelModel):
    previous_run_id: str
    previous_score: int
    current_score: int
    score_delta: int
    new_findings: list[str] = Field(default_factory=list)
    resolved_findings: list[str] = Field(default_factory=list)
    persisting_findings: list[str] = Field(default_factory=list)


# ── LLM responses (validated at the boundary) ────────────


class GapAnalysisResponse(CamelModel):
    is_compliant: bool
    has_gap: bool
    gap_title: str = ""
    gap_description: str = ""
    severity: Severity = Severity.MEDIUM
    evidence: list[str] = Field(default_factory=list)
    recommendation: str = ""

    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, value: Any) -> Severity:
        return _coerce_severity(value)

    @field_validator("evidence", mode="before")
    @classmethod
    def _evidence_strings(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        items: list[str] = []
        for item in value:
            if isinstance(item, str):
                items.append(item)
            elif isinstance(item, dict):
                items.append(str(item.get("content") or item.get("description") or json.dumps(item)))
            else:
                items.append(str(item))
        return items

    @property
    def is_gap(self) -> bool:
        return self.has_gap or not self.is_compliant


class RemediationTaskDraft(CamelModel):
    title: str
    description: str = ""
    priority: Severity = Severity.MEDIUM
    estimated_effort: str = ""
    steps: list[str] = Field(default_factory=list)

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, value: Any) -> Severity:
        return _coerce_severity(value)

    @field_validator("estimated_effort", mode="before")
    @classmethod
    def _effort_text(cls, value: Any) -> str:
        return "" if value is None else str(value)


class RemediationResponse(CamelModel):
    tasks: list[RemediationTaskDraft] = Field(default_factory=list)
