"""
Swarm orchestrator — starts assessment runs and drives them through the
pipeline graph.

`start()` checks preconditions synchronously, then schedules the run as a
task and returns a RunHandle for polling, awaiting or cancelling it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from compliance_swarm.mcp.servers import SERVER_REGISTRY
from compliance_swarm.models.enums import Framework, RunStatus
from compliance_swarm.models.schemas import Connection
from compliance_swarm.models.state import AssessmentRun, RunSnapshot
from compliance_swarm.orchestration.cancellation import CancellationToken, RunCancelledError
from compliance_swarm.orchestration.context import RunContext, SwarmContext
from compliance_swarm.orchestration.graph import build_graph
from compliance_swarm.orchestration.progress import ProgressCallback

logger = logging.getLogger(__name__)


class PreconditionError(ValueError):
    """The caller asked for a run that cannot start."""


class RunHandle:
    def __init__(self, ctx: RunContext, task: asyncio.Task):
        self._ctx = ctx
        self._task = task

    @property
    def run_id(self) -> str:
        return self._ctx.run.run_id

    @property
    def run(self) -> AssessmentRun:
        """Live run state; the final state once the task is done."""
        return self._ctx.run

    def snapshot(self) -> RunSnapshot:
        return self._ctx.run.snapshot()

    def cancel(self, reason: str = "Run cancelled") -> None:
        self._ctx.token.cancel(reason)

    def done(self) -> bool:
        return self._task.done()

    async def result(self) -> AssessmentRun:
        return await asyncio.shield(self._task)


class SwarmOrchestrator:
    def __init__(self, context: SwarmContext):
        self.context = context

    # ── Preconditions ────────────────────────────────────

    def validate(self, framework: str, connections: list[Connection]) -> Framework:
        try:
            parsed = Framework.parse(framework)
        except ValueError as exc:
            raise PreconditionError(str(exc)) from exc
        if parsed not in self.context.catalog.frameworks():
            raise PreconditionError(f"No requirement catalog for {parsed.value}")

        if not connections:
            raise PreconditionError("At least one data source connection is required")
        unknown = [c.server for c in connections if c.server not in SERVER_REGISTRY]
        if unknown:
            raise PreconditionError(f"Unknown data source(s): {', '.join(unknown)}")

        connected = {SERVER_REGISTRY[c.server].category.value for c in connections}
        missing = [c for c in self.context.settings.required_source_categories if c not in connected]
        if missing:
            raise PreconditionError(f"Missing required data source category: {', '.join(missing)}")
        return parsed

    # ── Entry points ─────────────────────────────────────

    def start(
        self,
        project_id: str,
        user_id: str,
        framework: str,
        connections: list[Connection],
        on_progress: Optional[ProgressCallback] = None,
    ) -> RunHandle:
        """Validate and schedule a run on the running event loop."""
        parsed = self.validate(framework, connections)
        run = AssessmentRun(
            project_id=project_id,
            user_id=user_id,
            framework=parsed.value,
            sources=[c.server for c in connections],
        )
        ctx = RunContext(
            swarm=self.context,
            run=run,
            connections=list(connections),
            token=CancellationToken(),
        )
        if on_progress is not None:
            self.context.publisher.add_callback(run.run_id, on_progress)

        task = asyncio.create_task(self._execute(ctx), name=run.run_id)
        logger.info(f"Scheduled {parsed.value} run {run.run_id} for project {project_id}")
        return RunHandle(ctx, task)

    async def run(
        self,
        project_id: str,
        user_id: str,
        framework: str,
        connections: list[Connection],
        on_progress: Optional[ProgressCallback] = None,
    ) -> AssessmentRun:
        handle = self.start(project_id, user_id, framework, connections, on_progress)
        return await handle.result()

    # ── Execution ────────────────────────────────────────

    async def _execute(self, ctx: RunContext) -> AssessmentRun:
        compiled = build_graph(ctx)
        run = ctx.run

        logger.info("═" * 60)
        logger.info(f"  ASSESSMENT STARTING — {run.run_id} ({run.framework})")
        logger.info("═" * 60)

        try:
            final_state = await compiled.ainvoke(run.model_dump())
            final = AssessmentRun.model_validate(final_state)
        except RunCancelledError as exc:
            final = ctx.run
            if not final.status.is_terminal:
                final.record_error(str(exc) or "Run cancelled")
                await ctx.finish(final, RunStatus.FAILED, "Run cancelled")
        except Exception as exc:
            logger.exception(f"Pipeline crashed for {run.run_id}: {exc}")
            final = ctx.run
            if not final.status.is_terminal:
                final.record_error(f"[{final.phase.value}] {exc}")
                await ctx.finish(final, RunStatus.FAILED, f"Assessment failed: {exc}")

        ctx.run = final
        logger.info("═" * 60)
        logger.info(f"  ASSESSMENT FINISHED — status: {final.status.value}")
        logger.info("═" * 60)
        return final
