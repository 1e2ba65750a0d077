"""
Explicitly constructed collaborators for the pipeline.

  - SwarmContext → long-lived dependencies shared by every run (LLM, tool
                   invoker, vector store, Corrective RAG, repository,
                   progress publisher, requirement catalog)
  - RunContext   → one run's view: its connections, cancellation token and
                   the helpers agents use to emit tagged progress events

The caller owns the lifecycle; nothing here is a module-level singleton.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from compliance_swarm.config import Settings, get_settings
from compliance_swarm.mcp.client import MCPClientManager, ToolInvoker
from compliance_swarm.mcp.embeddings.embedding_model import EmbeddingModel
from compliance_swarm.mcp.regulations import RegulationLibrary, RequirementCatalog
from compliance_swarm.mcp.vector_store import (
    InMemoryIndexBackend,
    PineconeIndexBackend,
    VectorStore,
)
from compliance_swarm.models.enums import EventType, RunStatus
from compliance_swarm.models.schemas import Connection
from compliance_swarm.models.state import AssessmentRun
from compliance_swarm.orchestration.cancellation import CancellationToken
from compliance_swarm.orchestration.progress import ProgressEvent, ProgressPublisher
from compliance_swarm.persistence import (
    InMemoryRunRepository,
    MongoConnection,
    MongoRunRepository,
    RunRepository,
)
from compliance_swarm.rag.corrective_rag import CorrectiveRAG
from compliance_swarm.services.llm_service import ChatCompletion, GroqChatCompletion

logger = logging.getLogger(__name__)


@dataclass
class SwarmContext:
    settings: Settings
    llm: ChatCompletion
    tools: ToolInvoker
    vector_store: VectorStore
    rag: CorrectiveRAG
    repository: RunRepository
    publisher: ProgressPublisher
    catalog: RequirementCatalog = field(default_factory=RequirementCatalog)

    @property
    def regulations(self) -> RegulationLibrary:
        return RegulationLibrary(self.catalog, self.vector_store)


def build_context(settings: Optional[Settings] = None) -> SwarmContext:
    """Wire the production collaborators selected by *settings*."""
    settings = settings or get_settings()

    embedder = EmbeddingModel(settings)
    if settings.vector_db_backend == "pinecone":
        backend = PineconeIndexBackend(settings, lambda: embedder.dimension)
    else:
        backend = InMemoryIndexBackend()
    vector_store = VectorStore(embedder, backend, settings)

    if settings.persistence_backend == "mongo":
        repository: RunRepository = MongoRunRepository(MongoConnection(settings))
    else:
        repository = InMemoryRunRepository()

    llm = GroqChatCompletion(settings)
    logger.info(
        f"Context ready: vector={settings.vector_db_backend} "
        f"persistence={settings.persistence_backend} llm={settings.llm_model}"
    )
    return SwarmContext(
        settings=settings,
        llm=llm,
        tools=MCPClientManager(settings),
        vector_store=vector_store,
        rag=CorrectiveRAG(vector_store, llm, settings),
        repository=repository,
        publisher=ProgressPublisher(
            history_size=settings.progress_history_size,
            queue_size=settings.progress_subscriber_queue_size,
            delivery_timeout=settings.progress_delivery_timeout_seconds,
            retained_runs=settings.progress_retained_runs,
        ),
    )


@dataclass
class RunContext:
    swarm: SwarmContext
    run: AssessmentRun
    connections: list[Connection]
    token: CancellationToken = field(default_factory=CancellationToken)

    @property
    def settings(self) -> Settings:
        return self.swarm.settings

    # ── Guarded external calls ───────────────────────────

    async def call_llm(
        self, system_prompt: str, user_prompt: str, temperature: Optional[float] = None
    ) -> str:
        return await self.token.guard(
            self.swarm.llm.complete(system_prompt, user_prompt, temperature),
            timeout=self.settings.llm_timeout_seconds,
        )

    async def save_run(self, run: AssessmentRun) -> int:
        return await self.token.guard(
            asyncio.to_thread(self.swarm.repository.save_run, run),
            timeout=self.settings.report_save_timeout_seconds,
        )

    # ── Progress events ──────────────────────────────────

    async def step(self, run: AssessmentRun, message: str, source: Optional[str] = None) -> None:
        run.record_step(message)
        await self._publish(EventType.STEP, run, message, source)

    async def error(self, run: AssessmentRun, message: str, source: Optional[str] = None) -> None:
        run.record_error(message)
        await self._publish(EventType.ERROR, run, message, source)

    async def finish(self, run: AssessmentRun, status: RunStatus, message: str) -> None:
        """Move *run* to a terminal status, announce it, and persist the final state."""
        if not run.status.is_terminal:
            run.current_step = message
            run.finish(status)
        await self._publish(EventType.COMPLETE, run, message, None)
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.swarm.repository.save_run, run),
                timeout=self.settings.report_save_timeout_seconds,
            )
        except Exception as exc:
            logger.warning(f"[{run.run_id}] Final state not persisted: {exc}")

    async def _publish(
        self, event_type: EventType, run: AssessmentRun, message: str, source: Optional[str]
    ) -> None:
        self.run = run
        await self.swarm.publisher.publish(
            ProgressEvent(
                type=event_type,
                run_id=run.run_id,
                phase=run.phase,
                source=source,
                message=message,
                snapshot=run.snapshot(),
            )
        )
