"""Fixtures shared by the test-suite."""

from typing import Optional

import pytest

from compliance_swarm.config import Settings
from compliance_swarm.mcp.client import ToolInvoker
from compliance_swarm.mcp.embeddings.embedding_model import Embedder
from compliance_swarm.mcp.regulations import RequirementCatalog
from compliance_swarm.mcp.vector_store import InMemoryIndexBackend, VectorStore
from compliance_swarm.orchestration.context import SwarmContext
from compliance_swarm.orchestration.progress import ProgressPublisher
from compliance_swarm.persistence import InMemoryRunRepository
from compliance_swarm.rag.corrective_rag import CorrectiveRAG
from compliance_swarm.services.llm_service import ChatCompletion
from compliance_swarm.tests.fakes import (
    GITHUB_TOOLS,
    FakeToolInvoker,
    MappedEmbedder,
    ScriptedLLM,
    small_catalog,
)


# ── Fixtures ─────────────────────────────────────────────

@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        groq_api_key="test-key",
        llm_timeout_seconds=5,
        embedding_timeout_seconds=5,
        vector_query_timeout_seconds=5,
        report_save_timeout_seconds=5,
        mcp_call_tool_timeout_seconds=5,
        mcp_list_tools_timeout_seconds=5,
    )


@pytest.fixture
def make_context(settings):
    """Factory building a SwarmContext from fakes; override any collaborator."""

    def factory(
        llm: Optional[ChatCompletion] = None,
        tools: Optional[ToolInvoker] = None,
        embedder: Optional[Embedder] = None,
        catalog: Optional[RequirementCatalog] = None,
        repository=None,
        settings_override: Optional[Settings] = None,
    ) -> SwarmContext:
        cfg = settings_override or settings
        llm = llm or ScriptedLLM()
        store = VectorStore(embedder or MappedEmbedder(), InMemoryIndexBackend(), cfg)
        return SwarmContext(
            settings=cfg,
            llm=llm,
            tools=tools or FakeToolInvoker({"github": GITHUB_TOOLS}),
            vector_store=store,
            rag=CorrectiveRAG(store, llm, cfg),
            repository=repository or InMemoryRunRepository(),
            publisher=ProgressPublisher(
                history_size=cfg.progress_history_size,
                queue_size=cfg.progress_subscriber_queue_size,
                delivery_timeout=cfg.progress_delivery_timeout_seconds,
                retained_runs=cfg.progress_retained_runs,
            ),
            catalog=catalog or small_catalog(),
        )

    return factory
