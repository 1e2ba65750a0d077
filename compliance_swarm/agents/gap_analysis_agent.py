"""
Phase 3.2 — Gap Analysis Agent.

One LLM assessment per requirement, bounded by a semaphore so only a few
calls are in flight at once.  Results are collected back in requirement
order.  An unparseable or failed assessment skips that requirement and is
recorded as a non-fatal error.
"""

from __future__ import annotations

import asyncio
import logging
import re

from compliance_swarm.agents.base_agent import BaseAgent
from compliance_swarm.models.enums import Phase
from compliance_swarm.models.schemas import (
    Evidence,
    ExtractionResult,
    GapAnalysisResponse,
    GapFinding,
    RequirementContext,
)
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.orchestration.cancellation import RunCancelledError
from compliance_swarm.prompts.templates import GAP_ANALYSIS_SYSTEM, gap_analysis_prompt
from compliance_swarm.services.llm_service import parse_llm_response

logger = logging.getLogger(__name__)

_SUPPORTING_EVIDENCE = 3
_REGULATION_CHUNKS = 5
_WORD = re.compile(r"[a-z0-9]+")


class GapAnalysisAgent(BaseAgent):
    phase = Phase.GAP_ANALYSIS
    label = "GapAnalysis"

    async def _real_process(self, run: AssessmentRun) -> None:
        await self.ctx.step(
            run, f"Phase 3.2: Analyzing {len(run.requirements)} requirements for compliance gaps"
        )

        pool = [e for result in run.extraction_results for e in result.evidence]
        evidence_text = summarize_evidence(run.extraction_results)
        semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent_llm_calls))

        async def bounded(index: int, context: RequirementContext):
            async with semaphore:
                return await self._assess(run, index, context, evidence_text, pool)

        outcomes = await asyncio.gather(
            *(bounded(i, c) for i, c in enumerate(run.requirements)),
            return_exceptions=True,
        )

        for context, outcome in zip(run.requirements, outcomes):
            if isinstance(outcome, RunCancelledError):
                raise outcome
            if isinstance(outcome, Exception):
                logger.warning(f"[GapAnalysis] {context.requirement.code} skipped: {outcome}")
                await self.ctx.error(
                    run, f"[GapAnalysis] {context.requirement.code}: assessment skipped ({outcome})"
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome is not None:
                run.gap_findings.append(outcome)

        await self.ctx.step(
            run,
            f"Phase 3.2 completed: {len(run.gap_findings)} gaps across {len(run.requirements)} requirements",
        )

    async def _assess(
        self,
        run: AssessmentRun,
        index: int,
        context: RequirementContext,
        evidence_text: str,
        pool: list[Evidence],
    ) -> GapFinding | None:
        requirement = context.requirement
        regulation_text = "\n\n".join(
            f"[{r.chunk.metadata.requirement_code or r.chunk.id}] {r.chunk.content}"
            for r in context.chunks[:_REGULATION_CHUNKS]
        )
        raw = await self.ctx.call_llm(
            GAP_ANALYSIS_SYSTEM,
            gap_analysis_prompt(
                run.framework,
                requirement.code,
                requirement.title,
                requirement.description,
                regulation_text,
                evidence_text,
            ),
        )
        response = parse_llm_response(raw, GapAnalysisResponse)
        if not response.is_gap:
            logger.info(f"[GapAnalysis] {requirement.code}: compliant")
            return None

        evidence = [
            Evidence(type="assessment", source="gap-analysis", content=text)
            for text in response.evidence
            if text.strip()
        ]
        evidence += supporting_evidence(requirement.title, requirement.category, pool)

        logger.info(f"[GapAnalysis] {requirement.code}: gap ({response.severity.value})")
        return GapFinding(
            id=f"gap-{requirement.code}-{index}",
            requirement_code=requirement.code,
            category=requirement.category,
            severity=response.severity,
            title=response.gap_title or f"{requirement.code} {requirement.title} not satisfied",
            description=response.gap_description or requirement.description,
            evidence=evidence,
            recommendation=response.recommendation or None,
        )


# ── Helpers ──────────────────────────────────────────────


def summarize_evidence(results: list[ExtractionResult], per_source: int = 5) -> str:
    """Compact, prompt-sized text view of what every source returned."""
    blocks: list[str] = []
    for result in results:
        if result.error:
            blocks.append(f"## {result.source}\nUnavailable: {result.error}")
            continue
        lines = [f"## {result.source} ({len(result.evidence)} items)"]
        lines += [f"- [{e.type}] {e.content[:200]}" for e in result.evidence[:per_source]]
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def supporting_evidence(title: str, category: str, pool: list[Evidence]) -> list[Evidence]:
    """Up to three collected items that share the most keywords with the requirement."""
    keywords = {w for w in _WORD.findall(f"{title} {category}".lower()) if len(w) > 3}
    if not keywords:
        return []
    scored = []
    for item in pool:
        content = item.content.lower()
        score = sum(1 for w in keywords if w in content)
        if score:
            scored.append((score, item))
    scored.sort(key=lambda pair: -pair[0])
    return [item for _, item in scored[:_SUPPORTING_EVIDENCE]]
