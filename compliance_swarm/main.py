"""
Compliance Swarm — Main Entry Point

Run one assessment from a JSON request file (CLI):
    python -m compliance_swarm request.json

Run as an API server:
    python -m compliance_swarm --serve
    # or: uvicorn compliance_swarm.api:app --reload --port 8000

Or import and run programmatically:
    from compliance_swarm.main import run
    result = run("path/to/request.json")

Request file:
    {
      "project_id": "acme-web",
      "user_id": "u-1",
      "framework": "SOC2",
      "connections": [{"server": "github", "credentials": {"access_token": "..."}}],
      "report_path": "report.md"          (optional)
    }
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from compliance_swarm.config import get_settings
from compliance_swarm.models.enums import Framework
from compliance_swarm.models.schemas import Connection
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.orchestration.context import build_context
from compliance_swarm.orchestration.runner import SwarmOrchestrator
from compliance_swarm.services.report_renderer import render_markdown
from compliance_swarm.utils.logger import setup_logging


class AssessmentRequest(BaseModel):
    project_id: str
    user_id: str
    framework: str
    connections: list[Connection]
    report_path: Optional[str] = None


async def _assess(request: AssessmentRequest) -> AssessmentRun:
    context = build_context(get_settings())
    seeded = await context.regulations.seed(Framework.parse(request.framework))
    logging.getLogger(__name__).info(f"Seeded {seeded} regulation chunks")
    try:
        return await SwarmOrchestrator(context).run(
            project_id=request.project_id,
            user_id=request.user_id,
            framework=request.framework,
            connections=request.connections,
        )
    finally:
        await context.tools.disconnect_all()


def run(request_path: str) -> AssessmentRun:
    """Run the full assessment pipeline and return the final run."""
    setup_logging(get_settings().log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("  COMPLIANCE SWARM")
    logger.info(f"  Started: {datetime.now(timezone.utc).isoformat()}")
    logger.info("=" * 60)

    request = AssessmentRequest.model_validate(json.loads(Path(request_path).read_text(encoding="utf-8")))
    result = asyncio.run(_assess(request))

    _print_summary(result)
    if request.report_path and result.report is not None:
        Path(request.report_path).write_text(render_markdown(result.report), encoding="utf-8")
        logger.info(f"  Report written to {request.report_path}")
    return result


def _print_summary(run: AssessmentRun) -> None:
    """Print a human-readable summary of the run."""
    logger = logging.getLogger(__name__)

    logger.info("")
    logger.info("-" * 60)
    logger.info("  ASSESSMENT RESULT SUMMARY")
    logger.info("-" * 60)
    logger.info(f"  Run ID:         {run.run_id}")
    logger.info(f"  Project:        {run.project_id}")
    logger.info(f"  Framework:      {run.framework}")
    logger.info(f"  Final Status:   {run.status.value}")
    ok = sum(1 for r in run.extraction_results if r.succeeded)
    logger.info(f"  Data Sources:   {ok}/{len(run.extraction_results)} succeeded")
    logger.info(f"  Requirements:   {len(run.requirements)} assessed")
    logger.info(f"  Gaps:           {len(run.gap_findings)}")
    logger.info(f"  Remediation:    {len(run.remediation_plan)} tasks")
    if run.report is not None:
        logger.info(f"  Score:          {run.report.compliance_score.overall}/100")
    if run.comparison is not None:
        logger.info(f"  Score Delta:    {run.comparison.score_delta:+d} vs {run.comparison.previous_run_id}")
    logger.info("-" * 60)

    logger.info(f"\n  Errors: {len(run.errors)}")
    for error in run.errors:
        logger.info(f"    {error}")
    logger.info("")


def serve(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Start the FastAPI server."""
    import uvicorn

    setup_logging(get_settings().log_level)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting API server on {host}:{port}")
    uvicorn.run("compliance_swarm.api:app", host=host, port=port)


def cli(argv: Optional[list[str]] = None) -> None:
    args = sys.argv[1:] if argv is None else argv
    if "--serve" in args:
        serve()
    elif args:
        run(args[0])
    else:
        print("usage: python -m compliance_swarm <request.json> | --serve", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    cli()
