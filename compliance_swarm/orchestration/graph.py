"""
LangGraph State Machine — the assessment pipeline.

  phase1_planning → phase2_extraction → phase3_1_requirement_retrieval
  → phase3_2_gap_analysis → phase3_3_remediation → phase4_report
  → phase5_comparison → finalize

After every phase a conditional edge routes to `end_failed` when the run
was marked failed.  The graph is compiled per run because its nodes are
bound to that run's context.
"""

from __future__ import annotations

import logging
from typing import Any

from langgraph.graph import END, StateGraph

from compliance_swarm.agents import (
    ComparisonAgent,
    ExtractionAgent,
    GapAnalysisAgent,
    PlanningAgent,
    RemediationAgent,
    ReportAgent,
    RequirementRetrievalAgent,
)
from compliance_swarm.models.enums import Phase, RunStatus
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.orchestration.context import RunContext
from compliance_swarm.orchestration.transitions import FAILED_NODE, route_after_report, route_to

logger = logging.getLogger(__name__)

PHASE_AGENTS = [
    PlanningAgent,
    ExtractionAgent,
    RequirementRetrievalAgent,
    GapAnalysisAgent,
    RemediationAgent,
    ReportAgent,
    ComparisonAgent,
]


def build_graph(ctx: RunContext):
    """
    Construct and compile the pipeline state machine for one run.
    Returns a compiled graph ready for `ainvoke`.
    """

    # ── Terminal nodes (set final status and stop) ───────

    async def finalize(state: dict[str, Any]) -> dict[str, Any]:
        run = AssessmentRun.model_validate(state)
        run.advance_to(Phase.FINISHED)
        score = run.report.compliance_score.overall
        await ctx.finish(run, RunStatus.COMPLETED, f"Assessment completed with score {score}/100")
        logger.info(f"Pipeline finished: COMPLETED ({score}/100)")
        return run.model_dump()

    async def end_failed(state: dict[str, Any]) -> dict[str, Any]:
        run = AssessmentRun.model_validate(state)
        reason = run.fatal_error or "Assessment did not produce a report"
        if run.report is None and not run.fatal_error:
            run.record_error(f"[{Phase.REPORT.value}] {reason}")
        await ctx.finish(run, RunStatus.FAILED, f"Assessment failed: {reason}")
        logger.warning(f"Pipeline terminated: FAILED ({reason})")
        return run.model_dump()

    graph = StateGraph(dict)

    # ── Add nodes ────────────────────────────────────────
    agents = [agent_cls(ctx) for agent_cls in PHASE_AGENTS]
    for agent in agents:
        graph.add_node(agent.phase.value, agent.process)
    graph.add_node("finalize", finalize)
    graph.add_node(FAILED_NODE, end_failed)

    # ── Set entry point ──────────────────────────────────
    graph.set_entry_point(Phase.PLANNING.value)

    # ── Add edges ────────────────────────────────────────
    names = [agent.phase.value for agent in agents]
    for current, following in zip(names, names[1:] + ["finalize"]):
        if current == Phase.REPORT.value:
            router = route_after_report
        else:
            router = route_to(following)
        graph.add_conditional_edges(
            current,
            router,
            {following: following, FAILED_NODE: FAILED_NODE},
        )

    graph.add_edge("finalize", END)
    graph.add_edge(FAILED_NODE, END)

    return graph.compile()
