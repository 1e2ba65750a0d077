"""
Corrective RAG — retrieval with an iterative query-refinement loop.

Per iteration:
  1. search(current_query, k=10, filters) and merge unseen chunks by id
  2. stop once ≥5 accumulated results exceed 0.8 similarity, but only after
     at least one refinement has been attempted (iteration > 0)
  3. otherwise, unless this is the last iteration, ask the LLM for a better
     query; stop when it offers nothing new

A failed correction call counts as "no improvement".  The loop is bounded
by `crag_max_iterations` (3).
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from compliance_swarm.config import Settings
from compliance_swarm.mcp.vector_store import VectorStore
from compliance_swarm.models.schemas import SearchFilters, SearchResult
from compliance_swarm.orchestration.cancellation import CancellationToken, RunCancelledError
from compliance_swarm.prompts.templates import QUERY_CORRECTION_SYSTEM, query_correction_prompt
from compliance_swarm.services.llm_service import ChatCompletion

logger = logging.getLogger(__name__)

_SNIPPET_CHARS = 200
_CORRECTION_CONTEXT = 5
_VECTOR_WEIGHT = 0.7
_KEYWORD_WEIGHT = 0.3


class CorrectiveRAGResult(BaseModel):
    chunks: list[SearchResult] = Field(default_factory=list)
    final_query: str
    iterations: int
    corrections: list[str] = Field(default_factory=list)


def _ranked(results: Iterable[SearchResult]) -> list[SearchResult]:
    return sorted(results, key=lambda r: (-r.similarity, r.chunk.id))


class CorrectiveRAG:
    def __init__(self, vector_store: VectorStore, llm: ChatCompletion, settings: Settings):
        self.vector_store = vector_store
        self.llm = llm
        self.settings = settings

    async def retrieve(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        context: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> CorrectiveRAGResult:
        max_iterations = self.settings.crag_max_iterations
        top_k = self.settings.crag_top_k
        current_query = query
        accumulated: dict[str, SearchResult] = {}
        corrections: list[str] = []
        iterations = 0

        for iteration in range(max_iterations):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            results = await self.vector_store.search(current_query, top_k, filters)
            iterations += 1
            for result in results:
                accumulated.setdefault(result.chunk.id, result)

            high_quality = sum(
                1
                for r in accumulated.values()
                if r.similarity > self.settings.crag_high_quality_similarity
            )
            logger.debug(
                f"[CRAG] iteration={iteration} query={current_query[:60]!r} "
                f"new={len(results)} total={len(accumulated)} high_quality={high_quality}"
            )

            if iteration > 0 and high_quality >= self.settings.crag_min_high_quality:
                logger.info(f"[CRAG] Enough high-quality results after {iterations} searches")
                break

            if iteration == max_iterations - 1:
                break

            top = _ranked(accumulated.values())[:_CORRECTION_CONTEXT]
            corrected = await self._correct_query(query, current_query, top, context, cancel_token)
            if not corrected or corrected == current_query:
                logger.debug("[CRAG] No further query improvement")
                break

            corrections.append(corrected)
            current_query = corrected

        return CorrectiveRAGResult(
            chunks=_ranked(accumulated.values())[:top_k],
            final_query=current_query,
            iterations=iterations,
            corrections=corrections,
        )

    async def hybrid_search(
        self, query: str, k: int = 10, filters: Optional[SearchFilters] = None
    ) -> list[SearchResult]:
        """Re-rank vector results by 0.7·similarity + 0.3·keyword overlap."""
        results = await self.vector_store.search(query, k, filters)
        keywords = [w for w in query.lower().split() if len(w) > 3]

        blended: list[SearchResult] = []
        for result in results:
            content = result.chunk.content.lower()
            keyword_score = (
                sum(1 for w in keywords if w in content) / len(keywords) if keywords else 0.0
            )
            blended.append(
                SearchResult(
                    chunk=result.chunk,
                    similarity=_VECTOR_WEIGHT * result.similarity + _KEYWORD_WEIGHT * keyword_score,
                )
            )
        return _ranked(blended)[:k]

    async def _correct_query(
        self,
        original_query: str,
        current_query: str,
        top: list[SearchResult],
        context: Optional[str],
        cancel_token: Optional[CancellationToken],
    ) -> Optional[str]:
        prompt = query_correction_prompt(
            original_query,
            current_query,
            [r.chunk.content[:_SNIPPET_CHARS] for r in top],
            context,
        )
        call = self.llm.complete(QUERY_CORRECTION_SYSTEM, prompt, 0.3)
        try:
            if cancel_token is not None:
                raw = await cancel_token.guard(call, timeout=self.settings.llm_timeout_seconds)
            else:
                raw = await call
        except RunCancelledError:
            raise
        except Exception as exc:
            logger.warning(f"[CRAG] Query correction failed, keeping current query: {exc}")
            return None

        lines = [line.strip() for line in (raw or "").strip().splitlines() if line.strip()]
        if not lines:
            return None
        return lines[0].strip("\"'` ")
