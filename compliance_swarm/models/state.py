"""
Assessment run state — the single object that flows through every node.

Design rules:
  1. Each field is "owned" by one phase (see comments).
  2. Phases move strictly forward; `advance_to` rejects backward moves.
  3. `errors` is append-only for the whole run.
  4. Once the status is terminal every mutator raises RunFinalizedError.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from .enums import Phase, RunStatus
from .schemas import (
    AssessmentPlan,
    ComparisonResult,
    ComplianceReport,
    ExtractionResult,
    GapFinding,
    RemediationTask,
    RequirementContext,
    ToolCallRecord,
)


class InvalidTransitionError(RuntimeError):
    """A phase transition tried to move backwards."""


class RunFinalizedError(RuntimeError):
    """A terminal run was mutated."""


def new_run_id() -> str:
    return f"run-{uuid.uuid4().hex[:12]}"


class RunSnapshot(BaseModel):
    """Read-only view handed to progress listeners and pollers."""

    run_id: str
    current_step: str
    phase: Phase
    status: RunStatus
    extraction_results: list[ExtractionResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)


class AssessmentRun(BaseModel):
    """One execution of the pipeline for a (project, framework) pair."""

    # ── Identity ─────────────────────────────────────────
    run_id: str = Field(default_factory=new_run_id)
    project_id: str
    user_id: str
    framework: str
    sources: list[str] = Field(default_factory=list)

    # ── Pipeline control ─────────────────────────────────
    phase: Phase = Phase.PENDING
    status: RunStatus = RunStatus.PENDING
    current_step: str = ""
    steps: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    # ── Phase 1 Planning ─────────────────────────────────
    plan: Optional[AssessmentPlan] = None

    # ── Phase 2 Extraction ───────────────────────────────
    extraction_results: list[ExtractionResult] = Field(default_factory=list)

    # ── Phase 3 Analysis ─────────────────────────────────
    requirements: list[RequirementContext] = Field(default_factory=list)
    gap_findings: list[GapFinding] = Field(default_factory=list)
    remediation_plan: list[RemediationTask] = Field(default_factory=list)

    # ── Phase 4 Report / Phase 5 Comparison ──────────────
    report: Optional[ComplianceReport] = None
    comparison: Optional[ComparisonResult] = None

    # Set by a phase whose failure aborts the run; routes to the failure terminal
    fatal_error: Optional[str] = None

    # ── Mutators ─────────────────────────────────────────

    def _ensure_mutable(self) -> None:
        if self.status.is_terminal:
            raise RunFinalizedError(f"Run {self.run_id} is already {self.status.value}")

    def advance_to(self, phase: Phase) -> None:
        self._ensure_mutable()
        if phase.order < self.phase.order:
            raise InvalidTransitionError(
                f"Cannot move run {self.run_id} from {self.phase.value} back to {phase.value}"
            )
        self.phase = phase
        if self.status == RunStatus.PENDING:
            self.status = RunStatus.RUNNING

    def record_step(self, description: str) -> None:
        self._ensure_mutable()
        self.current_step = description
        self.steps.append(description)

    def record_error(self, message: str) -> None:
        self._ensure_mutable()
        self.errors.append(message)

    def finish(self, status: RunStatus) -> None:
        self._ensure_mutable()
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        self.status = status
        self.finished_at = datetime.now(timezone.utc)

    # ── Views ────────────────────────────────────────────

    @property
    def tool_calls(self) -> list[ToolCallRecord]:
        return [call for result in self.extraction_results for call in result.tool_calls]

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            run_id=self.run_id,
            current_step=self.current_step,
            phase=self.phase,
            status=self.status,
            extraction_results=[r.model_copy(deep=True) for r in self.extraction_results],
            errors=list(self.errors),
            tool_calls=[c.model_copy(deep=True) for c in self.tool_calls],
        )
