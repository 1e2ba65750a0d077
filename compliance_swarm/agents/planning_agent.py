"""
Phase 1 — Planning Agent.

Asks the LLM for an assessment plan (objectives, focus areas, extraction
strategy).  A transport failure aborts the run; an unusable response falls
back to the built-in plan for the framework so the pipeline can continue.
"""

from __future__ import annotations

import logging

from compliance_swarm.agents.base_agent import BaseAgent
from compliance_swarm.mcp.regulations import default_plan
from compliance_swarm.models.enums import Framework, Phase
from compliance_swarm.models.schemas import AssessmentPlan
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.prompts.templates import PLANNING_SYSTEM, assessment_plan_prompt
from compliance_swarm.services.llm_service import LLMResponseError, parse_llm_response

logger = logging.getLogger(__name__)


class PlanningAgent(BaseAgent):
    phase = Phase.PLANNING
    label = "Planning"
    fatal = True

    async def _real_process(self, run: AssessmentRun) -> None:
        framework = Framework.parse(run.framework)
        await self.ctx.step(
            run,
            f"Phase 1: Planning {framework.value} assessment across {len(run.sources)} data source(s)",
        )

        raw = await self.ctx.call_llm(
            PLANNING_SYSTEM, assessment_plan_prompt(framework.value, run.sources)
        )

        try:
            plan = parse_llm_response(raw, AssessmentPlan)
        except LLMResponseError as exc:
            logger.warning(f"[Planning] Unusable plan from LLM, using default: {exc}")
            await self.ctx.error(run, f"[Planning] Plan response rejected, using default plan: {exc}")
            plan = default_plan(framework, run.sources)

        fallback = default_plan(framework, run.sources)
        plan.framework = framework.value
        if not plan.focus_areas:
            plan.focus_areas = fallback.focus_areas
        if not plan.objectives:
            plan.objectives = fallback.objectives
        if not plan.extraction_strategy.data_sources:
            plan.extraction_strategy.data_sources = list(run.sources)

        run.plan = plan
        await self.ctx.step(
            run,
            f"Phase 1 completed: {len(plan.objectives)} objectives, "
            f"{len(plan.focus_areas)} focus areas",
        )
