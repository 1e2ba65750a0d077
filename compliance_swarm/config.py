"""
Application configuration using Pydantic Settings.
All environment-specific values are centralized here.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class ConfigurationError(ValueError):
    """A required credential or environment value is missing."""


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── App ──────────────────────────────────────────────
    app_name: str = "Compliance Swarm"
    debug: bool = False

    # ── LLM (Groq) ───────────────────────────────────────
    groq_api_key: str = ""
    llm_model: str = "llama-3.3-70b-versatile"
    llm_temperature: float = 0.2
    llm_max_tokens: int = 4096
    llm_timeout_seconds: float = 60.0

    # ── Embeddings ───────────────────────────────────────
    embedding_model: str = "all-MiniLM-L6-v2"
    embedding_timeout_seconds: float = 30.0

    # ── Vector Store ─────────────────────────────────────
    vector_db_backend: str = "memory"  # "memory" | "pinecone"
    pinecone_api_key: str = ""
    pinecone_index_name: str = "compliance-regulations"
    pinecone_namespace: str = "regulations"
    pinecone_cloud: str = "aws"
    pinecone_region: str = "us-east-1"
    pinecone_auto_create: bool = True
    vector_query_timeout_seconds: float = 20.0
    match_threshold: float = 0.7
    filtered_match_threshold: float = 0.6

    # ── Corrective RAG ───────────────────────────────────
    crag_max_iterations: int = 3
    crag_top_k: int = 10
    crag_high_quality_similarity: float = 0.8
    crag_min_high_quality: int = 5

    # ── MCP tool servers ─────────────────────────────────
    mcp_max_connections_per_user: int = 5
    mcp_list_tools_timeout_seconds: float = 20.0
    mcp_call_tool_timeout_seconds: float = 30.0
    mcp_protocol_version: str = "2025-03-26"
    mcp_server_urls: dict[str, str] = {}  # server name → endpoint override

    # ── Persistence ──────────────────────────────────────
    persistence_backend: str = "memory"  # "memory" | "mongo"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_database: str = "compliance_swarm"
    report_save_timeout_seconds: float = 10.0

    # ── Pipeline Limits ──────────────────────────────────
    max_requirements_per_run: int = 10
    max_concurrent_llm_calls: int = 4
    max_evidence_items_per_source: int = 25
    requirement_retrieval_mode: str = "corrective"  # "corrective" | "hybrid"
    required_source_categories: list[str] = []  # e.g. ["code"]; empty means any source

    # ── Progress ─────────────────────────────────────────
    progress_history_size: int = 256
    progress_subscriber_queue_size: int = 128
    progress_delivery_timeout_seconds: float = 2.0
    progress_retained_runs: int = 64  # finished runs kept for replay and polling

    # ── Logging ──────────────────────────────────────────
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
