"""
API routes — thin HTTP layer that delegates to the orchestrator.

Routes:
  GET  /health                             → API health check
  POST /api/assessments                    → Start an assessment run (background task)
  GET  /api/assessments/{run_id}           → Poll the latest run snapshot
  POST /api/assessments/{run_id}/cancel    → Cancel a running assessment
  GET  /api/assessments/{run_id}/report    → Report as JSON or markdown
  WS   /api/assessments/ws/{run_id}        → Real-time progress events
  POST /api/regulations/seed               → Seed framework regulation text
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from compliance_swarm.models.enums import EventType, Framework
from compliance_swarm.models.schemas import Connection
from compliance_swarm.models.state import AssessmentRun, RunSnapshot
from compliance_swarm.orchestration.context import SwarmContext
from compliance_swarm.orchestration.runner import PreconditionError, RunHandle, SwarmOrchestrator
from compliance_swarm.services.report_renderer import render_json, render_markdown

logger = logging.getLogger(__name__)

# ── Routers ──────────────────────────────────────────────
health_router = APIRouter()
assessments_router = APIRouter()
regulations_router = APIRouter()


# ── Request / response schemas ───────────────────────────
class StartAssessmentRequest(BaseModel):
    project_id: str
    user_id: str
    framework: str
    connections: list[Connection]


class StartAssessmentResponse(BaseModel):
    run_id: str
    status: str
    message: str


class CancelResponse(BaseModel):
    run_id: str
    message: str


class SeedRequest(BaseModel):
    framework: str
    documents: Optional[dict[str, str]] = None  # requirement code → regulation text


class SeedResponse(BaseModel):
    framework: str
    chunks_stored: int


# ── Helpers ──────────────────────────────────────────────

def _context(request: Request) -> SwarmContext:
    return request.app.state.swarm


def _orchestrator(request: Request) -> SwarmOrchestrator:
    return request.app.state.orchestrator


def _handles(request: Request) -> dict[str, RunHandle]:
    return request.app.state.runs


def _remember(request: Request, handle: RunHandle) -> None:
    """Track *handle*, forgetting the oldest finished runs beyond the retention limit."""
    handles = _handles(request)
    handles[handle.run_id] = handle
    finished = [run_id for run_id, h in handles.items() if h.done()]
    excess = len(finished) - _context(request).settings.progress_retained_runs
    for run_id in finished[:max(excess, 0)]:
        del handles[run_id]


def _stored_run(request: Request, run_id: str) -> Optional[AssessmentRun]:
    handle = _handles(request).get(run_id)
    if handle is not None and handle.done():
        return handle.run
    return _context(request).repository.get_run(run_id)


# ── Health ───────────────────────────────────────────────

@health_router.get("/health")
async def health_check():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ── Assessments ──────────────────────────────────────────

@assessments_router.post("", response_model=StartAssessmentResponse, status_code=202)
async def start_assessment(body: StartAssessmentRequest, request: Request):
    """
    Start an assessment in the background.  Returns immediately with the
    run_id so the client can poll or connect to the WebSocket.
    """
    try:
        handle = _orchestrator(request).start(
            project_id=body.project_id,
            user_id=body.user_id,
            framework=body.framework,
            connections=body.connections,
        )
    except PreconditionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    _remember(request, handle)
    logger.info(f"Started assessment {handle.run_id} for project {body.project_id}")
    return StartAssessmentResponse(
        run_id=handle.run_id,
        status="running",
        message=f"Connect to /api/assessments/ws/{handle.run_id} for live progress",
    )


@assessments_router.get("/{run_id}", response_model=RunSnapshot)
async def get_assessment(run_id: str, request: Request):
    handle = _handles(request).get(run_id)
    if handle is not None:
        return handle.snapshot()

    latest = _context(request).publisher.latest(run_id)
    if latest is not None:
        return latest

    run = _context(request).repository.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return run.snapshot()


@assessments_router.post("/{run_id}/cancel", response_model=CancelResponse)
async def cancel_assessment(run_id: str, request: Request):
    handle = _handles(request).get(run_id)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    if handle.done():
        raise HTTPException(status_code=409, detail=f"Run {run_id} already finished")
    handle.cancel()
    return CancelResponse(run_id=run_id, message="Cancellation requested")


@assessments_router.get("/{run_id}/report")
async def get_report(run_id: str, request: Request, format: str = "json"):
    if format not in ("json", "markdown"):
        raise HTTPException(status_code=400, detail="format must be 'json' or 'markdown'")

    run = _stored_run(request, run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    if run.report is None:
        raise HTTPException(status_code=404, detail=f"Run {run_id} has no report ({run.status.value})")

    if format == "markdown":
        return PlainTextResponse(render_markdown(run.report), media_type="text/markdown")
    return render_json(run.report)


# ── WebSocket endpoint for real-time progress ────────────

@assessments_router.websocket("/ws/{run_id}")
async def ws_assessment_progress(websocket: WebSocket, run_id: str):
    """
    Streams every progress event for *run_id* (history first) and closes
    after the `complete` event.  Closes straight away when nothing more can
    arrive: the run is unknown, or finished and its history was evicted.
    """
    publisher = websocket.app.state.swarm.publisher
    handle = websocket.app.state.runs.get(run_id)
    await websocket.accept()
    queue = publisher.subscribe(run_id, replay=True)
    try:
        if queue.empty() and (handle is None or handle.done() or publisher.is_finished(run_id)):
            logger.info(f"No progress available for {run_id}; closing WebSocket")
            await websocket.close(code=1000)
            return
        while True:
            event = await queue.get()
            await websocket.send_json(event.to_json())
            if event.type == EventType.COMPLETE:
                break
        await websocket.close()
    except WebSocketDisconnect:
        logger.info(f"WebSocket client disconnected from {run_id}")
    finally:
        publisher.unsubscribe(run_id, queue)


# ── Regulations ──────────────────────────────────────────

@regulations_router.post("/seed", response_model=SeedResponse)
async def seed_regulations(body: SeedRequest, request: Request):
    try:
        framework = Framework.parse(body.framework)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    stored = await _context(request).regulations.seed(framework, body.documents)
    return SeedResponse(framework=framework.value, chunks_stored=stored)
