"""
Phase 5 — Comparison Agent.

Diffs this run's report against the latest stored report for the same
project and framework.  Without a prior report the phase is a no-op.
"""

from __future__ import annotations

import asyncio
import logging

from compliance_swarm.agents.base_agent import BaseAgent
from compliance_swarm.models.enums import Phase
from compliance_swarm.models.schemas import ComparisonResult, ComplianceReport
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.orchestration.cancellation import RunCancelledError

logger = logging.getLogger(__name__)


class ComparisonAgent(BaseAgent):
    phase = Phase.COMPARISON
    label = "Comparison"

    async def _real_process(self, run: AssessmentRun) -> None:
        if run.report is None:
            return

        try:
            previous = await self.ctx.token.guard(
                asyncio.to_thread(
                    self.ctx.swarm.repository.find_latest_report,
                    run.project_id,
                    run.framework,
                    run.run_id,
                ),
                timeout=self.settings.report_save_timeout_seconds,
            )
            if previous is None or previous.report is None:
                logger.info(f"[Comparison] No prior {run.framework} report for {run.project_id}")
                return
            run.comparison = compare_reports(previous.run_id, previous.report, run.report)
        except RunCancelledError:
            raise
        except Exception as exc:
            await self.ctx.error(run, f"[Comparison] Could not compare with prior run: {exc}")
            return

        delta = run.comparison.score_delta
        await self.ctx.step(
            run,
            f"Phase 5 completed: score {delta:+d} vs {previous.run_id}, "
            f"{len(run.comparison.new_findings)} new, "
            f"{len(run.comparison.resolved_findings)} resolved",
        )


def compare_reports(
    previous_run_id: str, previous: ComplianceReport, current: ComplianceReport
) -> ComparisonResult:
    before = [f.title for f in previous.findings]
    after = [f.title for f in current.findings]
    previous_score = previous.compliance_score.overall
    current_score = current.compliance_score.overall
    return ComparisonResult(
        previous_run_id=previous_run_id,
        previous_score=previous_score,
        current_score=current_score,
        score_delta=current_score - previous_score,
        new_findings=[t for t in after if t not in before],
        resolved_findings=[t for t in before if t not in after],
        persisting_findings=[t for t in after if t in before],
    )
