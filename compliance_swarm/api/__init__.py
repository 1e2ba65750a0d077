"""
FastAPI application factory and API package.

Run with:
    uvicorn compliance_swarm.api:app --reload --port 8000

Or via the package entry point:
    python -m compliance_swarm --serve
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from compliance_swarm.api.routes import assessments_router, health_router, regulations_router
from compliance_swarm.config import get_settings
from compliance_swarm.orchestration.context import SwarmContext, build_context
from compliance_swarm.orchestration.runner import SwarmOrchestrator

logger = logging.getLogger(__name__)


def create_app(context: Optional[SwarmContext] = None) -> FastAPI:
    """Application factory — create and configure the FastAPI instance."""
    settings = context.settings if context else get_settings()
    swarm = context or build_context(settings)

    application = FastAPI(
        title="Compliance Swarm API",
        description="Multi-agent compliance assessment pipeline",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS — allow the dashboard (adjust origins in production)
    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.state.swarm = swarm
    application.state.orchestrator = SwarmOrchestrator(swarm)
    application.state.runs = {}

    # Register route groups (includes WebSocket at /api/assessments/ws/{run_id})
    application.include_router(health_router, tags=["Health"])
    application.include_router(assessments_router, prefix="/api/assessments", tags=["Assessments"])
    application.include_router(regulations_router, prefix="/api/regulations", tags=["Regulations"])

    @application.on_event("startup")
    async def startup():
        logger.info(f"Starting {settings.app_name} API")

    @application.on_event("shutdown")
    async def shutdown():
        await swarm.tools.disconnect_all()
        logger.info("MCP sessions closed")

    return application


# Module-level instance for `uvicorn compliance_swarm.api:app`
app = create_app()
