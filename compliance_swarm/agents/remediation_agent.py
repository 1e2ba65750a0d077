"""
Phase 3.3 — Remediation Agent.

Asks the LLM for remediation tasks for every gap finding, then orders the
whole plan by priority (critical first).  Ties keep finding order.
"""

from __future__ import annotations

import asyncio
import logging

from compliance_swarm.agents.base_agent import BaseAgent
from compliance_swarm.models.enums import Phase
from compliance_swarm.models.schemas import GapFinding, RemediationResponse, RemediationTask
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.orchestration.cancellation import RunCancelledError
from compliance_swarm.prompts.templates import REMEDIATION_SYSTEM, remediation_prompt
from compliance_swarm.services.llm_service import parse_llm_response

logger = logging.getLogger(__name__)


class RemediationAgent(BaseAgent):
    phase = Phase.REMEDIATION
    label = "Remediation"

    async def _real_process(self, run: AssessmentRun) -> None:
        if not run.gap_findings:
            await self.ctx.step(run, "Phase 3.3: No gaps found, nothing to remediate")
            return

        await self.ctx.step(
            run, f"Phase 3.3: Planning remediation for {len(run.gap_findings)} gaps"
        )
        requirements = {c.requirement.code: c.requirement for c in run.requirements}
        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_llm_calls))

        async def bounded(finding: GapFinding) -> list[RemediationTask]:
            async with semaphore:
                requirement = requirements.get(finding.requirement_code)
                label = (
                    f"{requirement.code} {requirement.title}: {requirement.description}"
                    if requirement
                    else finding.requirement_code
                )
                return await self._plan(finding, label)

        outcomes = await asyncio.gather(
            *(bounded(f) for f in run.gap_findings), return_exceptions=True
        )

        tasks: list[RemediationTask] = []
        for finding, outcome in zip(run.gap_findings, outcomes):
            if isinstance(outcome, RunCancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                await self.ctx.error(
                    run, f"[Remediation] {finding.id}: no remediation plan ({outcome})"
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                tasks.extend(outcome)

        run.remediation_plan = prioritize(tasks)
        await self.ctx.step(
            run, f"Phase 3.3 completed: {len(run.remediation_plan)} remediation tasks"
        )

    async def _plan(self, finding: GapFinding, requirement: str) -> list[RemediationTask]:
        raw = await self.ctx.call_llm(
            REMEDIATION_SYSTEM,
            remediation_prompt(finding.title, finding.description, requirement),
        )
        response = parse_llm_response(raw, RemediationResponse)
        return [
            RemediationTask(
                finding_id=finding.id,
                title=draft.title,
                description=draft.description,
                priority=draft.priority,
                steps=draft.steps,
                estimated_effort=draft.estimated_effort,
            )
            for draft in response.tasks
        ]


def prioritize(tasks: list[RemediationTask]) -> list[RemediationTask]:
    return sorted(tasks, key=lambda task: -task.priority.rank)
