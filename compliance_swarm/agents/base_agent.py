"""
Base agent class that every pipeline phase inherits.

Design:
  - `process()` is called by the LangGraph node with the run as a dict.
  - `_real_process()` is the single abstract method, overridden per phase.
  - A phase marked `fatal` aborts the run when it raises; any other phase
    records the error and lets the pipeline continue.
  - Cancellation always propagates out of the graph.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from compliance_swarm.config import Settings
from compliance_swarm.models.enums import Phase
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.orchestration.cancellation import RunCancelledError
from compliance_swarm.orchestration.context import RunContext

logger = logging.getLogger(__name__)


class BaseAgent(ABC):
    """Abstract base for all pipeline phases."""

    phase: Phase  # set in each subclass
    label: str = ""
    fatal: bool = False

    def __init__(self, ctx: RunContext):
        self.ctx = ctx

    @property
    def settings(self) -> Settings:
        return self.ctx.settings

    # ── Public entry point (called by LangGraph node) ────

    async def process(self, state: dict[str, Any]) -> dict[str, Any]:
        self.ctx.token.raise_if_cancelled()

        t0 = time.perf_counter()
        separator = "═" * 70
        logger.info(f"\n{separator}")
        logger.info(f"▶ [{self.phase.value}] STARTING")
        logger.info(separator)
        _log_run_summary("INPUT STATE", state)

        run = AssessmentRun.model_validate(state)
        run.advance_to(self.phase)
        self.ctx.run = run

        try:
            await self._real_process(run)
            elapsed = time.perf_counter() - t0
            logger.info(f"✔ [{self.phase.value}] COMPLETED in {elapsed:.3f}s")
        except RunCancelledError:
            logger.warning(f"✘ [{self.phase.value}] CANCELLED after {time.perf_counter() - t0:.3f}s")
            raise
        except Exception as exc:
            elapsed = time.perf_counter() - t0
            logger.exception(f"✘ [{self.phase.value}] FAILED after {elapsed:.3f}s: {exc}")
            message = f"[{self.label or self.phase.value}] {exc}"
            await self.ctx.error(run, message, source=self.phase.value)
            if self.fatal:
                run.fatal_error = message

        out = run.model_dump()
        _log_run_summary("OUTPUT STATE", out)
        logger.info(f"{separator}\n")
        return out

    # ── Subclass hook ────────────────────────────────────

    @abstractmethod
    async def _real_process(self, run: AssessmentRun) -> None:
        """Mutate *run* in place with this phase's results."""
        ...


def _log_run_summary(label: str, state: dict[str, Any]) -> None:
    """Log collection sizes of the run at debug level."""
    lines = [f"  ┌─ {label}"]
    for key in sorted(state.keys()):
        val = state[key]
        if val is None or val == "" or val == [] or val == {}:
            lines.append(f"  │  {key}: <empty>")
        elif isinstance(val, list):
            lines.append(f"  │  {key}: list({len(val)} items)")
        elif isinstance(val, dict):
            lines.append(f"  │  {key}: dict({len(val)} keys)")
        else:
            text = str(val)
            lines.append(f"  │  {key}: {text[:80]}{'…' if len(text) > 80 else ''}")
    lines.append(f"  └─ ({len(state)} keys total)")
    logger.debug("\n".join(lines))
