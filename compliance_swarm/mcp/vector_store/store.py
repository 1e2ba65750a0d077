"""
Vector Store — embeds chunks, upserts them by id, and runs thresholded
similarity search with an unfiltered fallback.

Degradation rules:
  - Missing backing storage  → search returns [], store no-ops (both logged)
  - Query RPC / embedding timeout during search → []
  - Embedding timeout during store → VectorStoreTimeoutError, nothing written
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from compliance_swarm.config import Settings
from compliance_swarm.mcp.embeddings.embedding_model import Embedder
from compliance_swarm.mcp.vector_store.backends import StorageUnavailableError, VectorIndexBackend
from compliance_swarm.models.schemas import Chunk, SearchFilters, SearchResult, VectorRecord

logger = logging.getLogger(__name__)


class VectorStoreTimeoutError(TimeoutError):
    """A store operation exceeded its timeout budget."""


class EmbeddingTimeoutError(VectorStoreTimeoutError):
    """Embedding generation exceeded its timeout budget."""


class VectorStore:
    def __init__(self, embedder: Embedder, backend: VectorIndexBackend, settings: Settings):
        self.embedder = embedder
        self.backend = backend
        self.settings = settings

    # ── Write path ───────────────────────────────────────

    async def store(self, chunks: list[Chunk]) -> int:
        """Embed and upsert *chunks*.  Returns the number of records written."""
        if not chunks:
            return 0

        try:
            embeddings = await self._embed([c.content for c in chunks])
        except asyncio.TimeoutError as exc:
            raise EmbeddingTimeoutError(
                f"Embedding {len(chunks)} chunks exceeded {self.settings.embedding_timeout_seconds}s"
            ) from exc

        records = [VectorRecord(chunk=c, embedding=e) for c, e in zip(chunks, embeddings)]
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self.backend.upsert, records),
                timeout=self.settings.vector_query_timeout_seconds,
            )
        except StorageUnavailableError as exc:
            logger.warning(f"[VectorStore] Storage unavailable, skipping store: {exc}")
            return 0
        except asyncio.TimeoutError as exc:
            raise VectorStoreTimeoutError(
                f"Upserting {len(records)} records exceeded {self.settings.vector_query_timeout_seconds}s"
            ) from exc

        logger.info(f"[VectorStore] Stored {len(records)} chunks")
        return len(records)

    async def delete_by_source(self, source: str) -> int:
        try:
            deleted = await asyncio.wait_for(
                asyncio.to_thread(self.backend.delete_by_source, source),
                timeout=self.settings.vector_query_timeout_seconds,
            )
        except StorageUnavailableError as exc:
            logger.warning(f"[VectorStore] Storage unavailable, nothing deleted: {exc}")
            return 0
        except asyncio.TimeoutError as exc:
            raise VectorStoreTimeoutError(
                f"Deleting chunks for source={source} exceeded {self.settings.vector_query_timeout_seconds}s"
            ) from exc
        logger.info(f"[VectorStore] Deleted chunks for source={source}")
        return deleted

    # ── Read path ────────────────────────────────────────

    async def search(
        self, query: str, k: int = 10, filters: Optional[SearchFilters] = None
    ) -> list[SearchResult]:
        if filters is not None and filters.is_empty:
            filters = None

        try:
            vector = (await self._embed([query]))[0]
        except asyncio.TimeoutError:
            logger.warning(
                f"[VectorStore] Query embedding timed out after {self.settings.embedding_timeout_seconds}s"
            )
            return []

        threshold = (
            self.settings.filtered_match_threshold if filters else self.settings.match_threshold
        )
        results = await self._query(vector, k, filters, threshold)

        if not results and filters is not None:
            logger.info(
                f"[VectorStore] No results for filters {filters.as_dict()}; retrying unfiltered"
            )
            results = await self._query(vector, k, None, self.settings.filtered_match_threshold)

        logger.debug(f"[VectorStore] search({query[:60]!r}) → {len(results)} results")
        return results

    # ── Internals ────────────────────────────────────────

    async def _embed(self, texts: list[str]) -> list[list[float]]:
        return await asyncio.wait_for(
            asyncio.to_thread(self.embedder.embed, texts),
            timeout=self.settings.embedding_timeout_seconds,
        )

    async def _query(
        self,
        vector: list[float],
        k: int,
        filters: Optional[SearchFilters],
        threshold: float,
    ) -> list[SearchResult]:
        try:
            candidates = await asyncio.wait_for(
                asyncio.to_thread(self.backend.query, vector, k * 2, filters),
                timeout=self.settings.vector_query_timeout_seconds,
            )
        except StorageUnavailableError as exc:
            logger.warning(f"[VectorStore] Storage unavailable, returning no results: {exc}")
            return []
        except asyncio.TimeoutError:
            logger.warning(
                f"[VectorStore] Similarity query timed out after {self.settings.vector_query_timeout_seconds}s"
            )
            return []

        return [r for r in candidates if r.similarity >= threshold][:k]
