"""
Phase 3.1 — Requirement Retrieval Agent.

Selects the in-scope requirements (plan focus areas first) and retrieves
regulation text for each one, restricted to requirement chunks of the
run's framework.  A retrieval failure leaves that requirement with no
chunks; the others are unaffected.
"""

from __future__ import annotations

import logging

from compliance_swarm.agents.base_agent import BaseAgent
from compliance_swarm.models.enums import ContentType, Framework, Phase
from compliance_swarm.models.schemas import ComplianceRequirement, RequirementContext, SearchFilters
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.orchestration.cancellation import RunCancelledError

logger = logging.getLogger(__name__)


class RequirementRetrievalAgent(BaseAgent):
    phase = Phase.REQUIREMENT_RETRIEVAL
    label = "RequirementRetrieval"

    async def _real_process(self, run: AssessmentRun) -> None:
        framework = Framework.parse(run.framework)
        requirements = self.ctx.swarm.catalog.in_scope(
            framework, run.plan, self.settings.max_requirements_per_run
        )
        await self.ctx.step(
            run, f"Phase 3.1: Retrieving regulation text for {len(requirements)} requirements"
        )

        context = "; ".join(run.plan.objectives) if run.plan else None
        filters = SearchFilters(framework=framework.value, type=ContentType.REQUIREMENT)

        for requirement in requirements:
            self.ctx.token.raise_if_cancelled()
            try:
                run.requirements.append(await self._retrieve(requirement, filters, context))
            except RunCancelledError:
                raise
            except Exception as exc:
                logger.warning(f"[RequirementRetrieval] {requirement.code} failed: {exc}")
                run.requirements.append(RequirementContext(requirement=requirement))
                await self.ctx.error(
                    run, f"[RequirementRetrieval] {requirement.code}: retrieval failed ({exc})"
                )

        with_text = sum(1 for r in run.requirements if r.chunks)
        await self.ctx.step(
            run,
            f"Phase 3.1 completed: regulation text found for {with_text}/{len(run.requirements)} requirements",
        )

    async def _retrieve(
        self, requirement: ComplianceRequirement, filters: SearchFilters, context: str | None
    ) -> RequirementContext:
        query = f"{requirement.framework} {requirement.code} {requirement.title}: {requirement.description}"

        if self.settings.requirement_retrieval_mode == "hybrid":
            chunks = await self.ctx.swarm.rag.hybrid_search(query, self.settings.crag_top_k, filters)
            return RequirementContext(
                requirement=requirement, chunks=chunks, final_query=query, iterations=1
            )

        result = await self.ctx.swarm.rag.retrieve(query, filters, context, self.ctx.token)
        logger.debug(
            f"[RequirementRetrieval] {requirement.code}: {len(result.chunks)} chunks "
            f"after {result.iterations} searches"
        )
        return RequirementContext(
            requirement=requirement,
            chunks=result.chunks,
            final_query=result.final_query,
            iterations=result.iterations,
            corrections=result.corrections,
        )
