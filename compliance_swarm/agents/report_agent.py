"""
Phase 4 — Report Agent.

Assembles the ComplianceReport from everything earlier phases produced,
then saves the run.  Assembly failure is fatal; a save failure or timeout
is recorded and the run continues.
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone

from compliance_swarm.agents.base_agent import BaseAgent
from compliance_swarm.models.enums import Phase, Severity, ToolCallStatus
from compliance_swarm.models.schemas import (
    ComplianceReport,
    ComplianceScore,
    Evidence,
    GapFinding,
    ReportEvidence,
    ReportFinding,
    ReportMetadata,
    ReportSection,
)
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.orchestration.cancellation import RunCancelledError

logger = logging.getLogger(__name__)

SEVERITY_PENALTY: dict[Severity, int] = {
    Severity.CRITICAL: 20,
    Severity.HIGH: 10,
    Severity.MEDIUM: 5,
    Severity.LOW: 2,
}

_QUOTE_CHARS = 500
_EVIDENCE_PER_FINDING = 3


class ReportAgent(BaseAgent):
    phase = Phase.REPORT
    label = "Report"
    fatal = True

    async def _real_process(self, run: AssessmentRun) -> None:
        await self.ctx.step(run, "Phase 4: Generating compliance report")

        run.report = build_report(run)
        score = run.report.compliance_score.overall
        await self.ctx.step(
            run,
            f"Phase 4: Report generated with {len(run.report.findings)} findings, score {score}/100",
        )

        try:
            version = await self.ctx.save_run(run)
            logger.info(f"[Report] Saved run {run.run_id} (v{version})")
        except RunCancelledError:
            raise
        except Exception as exc:
            reason = str(exc) or f"timed out after {self.settings.report_save_timeout_seconds}s"
            await self.ctx.error(run, f"[Report] Saving report failed: {reason}")
            return

        await self.ctx.step(run, "Phase 4 completed: report saved")


# ── Report assembly ──────────────────────────────────────


def _clamp(value: int) -> int:
    return max(0, min(100, value))


def compute_score(run: AssessmentRun) -> ComplianceScore:
    overall = _clamp(100 - sum(SEVERITY_PENALTY[f.severity] for f in run.gap_findings))

    categories: list[str] = []
    for context in run.requirements:
        if context.requirement.category not in categories:
            categories.append(context.requirement.category)
    for finding in run.gap_findings:
        if finding.category not in categories:
            categories.append(finding.category)

    by_category = {
        category: _clamp(
            100
            - sum(SEVERITY_PENALTY[f.severity] for f in run.gap_findings if f.category == category)
        )
        for category in categories
    }
    return ComplianceScore(overall=overall, by_category=by_category)


def cite(evidence: Evidence) -> ReportEvidence:
    citation = f"{evidence.type} from {evidence.source}"
    if evidence.file_path:
        location = evidence.file_path
        if evidence.line_number is not None:
            location += f":{evidence.line_number}"
        citation += f" ({location})"
    elif evidence.url:
        citation += f" ({evidence.url})"
    return ReportEvidence(
        source=evidence.source,
        type=evidence.type,
        citation=citation,
        quote=evidence.content[:_QUOTE_CHARS],
    )


def _finding(gap: GapFinding, run: AssessmentRun) -> ReportFinding:
    recommendation = gap.recommendation or next(
        (t.title for t in run.remediation_plan if t.finding_id == gap.id), ""
    )
    return ReportFinding(
        title=gap.title,
        description=gap.description,
        severity=gap.severity,
        requirement_code=gap.requirement_code,
        evidence=[cite(e) for e in gap.evidence[:_EVIDENCE_PER_FINDING]],
        recommendation=recommendation,
    )


def _executive_summary(run: AssessmentRun, score: ComplianceScore) -> str:
    sources_ok = sum(1 for r in run.extraction_results if r.succeeded)
    counts = Counter(f.severity for f in run.gap_findings)
    breakdown = ", ".join(f"{counts[s]} {s.value}" for s in Severity if counts[s])

    summary = (
        f"This {run.framework} assessment of project {run.project_id} evaluated "
        f"{len(run.requirements)} requirements using evidence from "
        f"{sources_ok} of {len(run.extraction_results)} data sources. "
    )
    if run.gap_findings:
        summary += f"It identified {len(run.gap_findings)} compliance gaps ({breakdown}) "
        summary += f"and {len(run.remediation_plan)} remediation tasks. "
    else:
        summary += "No compliance gaps were identified. "
    summary += f"Overall compliance score: {score.overall}/100."
    if run.errors:
        summary += f" {len(run.errors)} issue(s) were recorded during the assessment."
    return summary


def _sections(run: AssessmentRun) -> list[ReportSection]:
    sections: list[ReportSection] = []

    plan = run.plan
    scope_lines = [f"Framework: {run.framework}"]
    if plan:
        scope_lines += [f"- Objective: {o}" for o in plan.objectives]
        scope_lines += [
            f"- Focus: {a.category} ({a.priority}) {', '.join(a.requirements)}".rstrip()
            for a in plan.focus_areas
        ]
    sections.append(ReportSection(title="Assessment Scope", content="\n".join(scope_lines)))

    source_lines: list[str] = []
    source_evidence: list[ReportEvidence] = []
    for result in run.extraction_results:
        ok = sum(1 for c in result.tool_calls if c.status == ToolCallStatus.SUCCESS)
        if result.error:
            source_lines.append(f"- {result.source}: unavailable ({result.error})")
        else:
            source_lines.append(
                f"- {result.source}: {ok}/{len(result.tool_calls)} tool calls succeeded, "
                f"{len(result.evidence)} evidence items"
            )
            source_evidence.append(
                ReportEvidence(
                    source=result.source,
                    type="extraction",
                    citation=f"{len(result.tool_calls)} tool calls via {result.agent}",
                )
            )
    sections.append(
        ReportSection(
            title="Data Sources",
            content="\n".join(source_lines) or "No data sources were assessed.",
            evidence=source_evidence,
        )
    )

    gapped = {f.requirement_code: f for f in run.gap_findings}
    coverage_lines: list[str] = []
    coverage_evidence: list[ReportEvidence] = []
    for context in run.requirements:
        req = context.requirement
        finding = gapped.get(req.code)
        verdict = f"gap ({finding.severity.value})" if finding else "no gap found"
        coverage_lines.append(
            f"- {req.code} {req.title}: {verdict}; {len(context.chunks)} regulation excerpts"
        )
        if context.chunks:
            top = context.chunks[0].chunk
            coverage_evidence.append(
                ReportEvidence(
                    source=top.metadata.source,
                    type="regulation",
                    citation=f"{req.code} regulation text ({top.id})",
                    quote=top.content[:_QUOTE_CHARS],
                )
            )
    sections.append(
        ReportSection(
            title="Requirement Coverage",
            content="\n".join(coverage_lines) or "No requirements were assessed.",
            evidence=coverage_evidence,
        )
    )

    plan_lines = [
        f"{i}. [{task.priority.value.upper()}] {task.title}"
        + (f" ({task.estimated_effort})" if task.estimated_effort else "")
        for i, task in enumerate(run.remediation_plan, 1)
    ]
    sections.append(
        ReportSection(
            title="Remediation Plan",
            content="\n".join(plan_lines) or "No remediation required.",
        )
    )
    return sections


def build_report(run: AssessmentRun) -> ComplianceReport:
    score = compute_score(run)
    return ComplianceReport(
        executive_summary=_executive_summary(run, score),
        sections=_sections(run),
        findings=[_finding(g, run) for g in run.gap_findings],
        compliance_score=score,
        remediation_plan=list(run.remediation_plan),
        metadata=ReportMetadata(
            framework=run.framework,
            generated_at=datetime.now(timezone.utc),
            data_sources=[r.source for r in run.extraction_results],
            extraction_agents=[r.agent for r in run.extraction_results if r.succeeded],
        ),
    )
