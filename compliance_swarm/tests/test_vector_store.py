"""
Tests: VectorStore upsert, thresholds, filtered fallback and degradation.

Run with:
    pytest compliance_swarm/tests/test_vector_store.py -v
"""

import asyncio
import math
import time

import pytest

from compliance_swarm.mcp.vector_store import (
    EmbeddingTimeoutError,
    InMemoryIndexBackend,
    StorageUnavailableError,
    VectorIndexBackend,
    VectorStore,
    VectorStoreTimeoutError,
)
from compliance_swarm.models.enums import ContentType
from compliance_swarm.models.schemas import Chunk, ChunkMetadata, SearchFilters
from compliance_swarm.tests.fakes import MappedEmbedder


def _chunk(chunk_id: str, content: str, framework: str = "SOC2") -> Chunk:
    return Chunk(
        id=chunk_id,
        content=content,
        metadata=ChunkMetadata(source="catalog", type=ContentType.REQUIREMENT, framework=framework),
    )


def _vector(x: float) -> list[float]:
    """Unit vector in the x/z plane; its cosine with [1, 0, 0] is *x*."""
    return [x, 0.0, math.sqrt(1 - x ** 2)]


class TestStore:
    def test_upsert_is_idempotent_and_last_write_wins(self, settings):
        backend = InMemoryIndexBackend()
        store = VectorStore(MappedEmbedder(), backend, settings)

        asyncio.run(store.store([_chunk("c1", "first version")]))
        asyncio.run(store.store([_chunk("c1", "second version")]))

        assert backend.count() == 1
        assert backend.get("c1").chunk.content == "second version"

    def test_empty_input_writes_nothing(self, settings):
        store = VectorStore(MappedEmbedder(), InMemoryIndexBackend(), settings)
        assert asyncio.run(store.store([])) == 0

    def test_embedding_timeout_raises(self, settings):
        class SlowEmbedder(MappedEmbedder):
            def embed(self, texts):
                time.sleep(0.3)
                return super().embed(texts)

        slow = settings.model_copy(update={"embedding_timeout_seconds": 0.05})
        store = VectorStore(SlowEmbedder(), InMemoryIndexBackend(), slow)

        with pytest.raises(EmbeddingTimeoutError):
            asyncio.run(store.store([_chunk("c1", "text")]))

    def test_delete_by_source(self, settings):
        backend = InMemoryIndexBackend()
        store = VectorStore(MappedEmbedder(), backend, settings)
        asyncio.run(store.store([_chunk("c1", "a"), _chunk("c2", "b")]))

        assert asyncio.run(store.delete_by_source("catalog")) == 2
        assert backend.count() == 0

    def test_delete_timeout_raises(self, settings):
        class SlowBackend(InMemoryIndexBackend):
            def delete_by_source(self, source):
                time.sleep(0.3)
                return super().delete_by_source(source)

        slow = settings.model_copy(update={"vector_query_timeout_seconds": 0.05})
        store = VectorStore(MappedEmbedder(), SlowBackend(), slow)

        with pytest.raises(VectorStoreTimeoutError):
            asyncio.run(store.delete_by_source("catalog"))


class TestSearch:
    def _store(self, settings) -> VectorStore:
        embedder = MappedEmbedder(
            {
                "strong": [1.0, 0.0, 0.0],
                "query": [0.9, math.sqrt(1 - 0.81), 0.0],
                "mid": _vector(0.72),
            },
            default=[0.0, 0.0, 1.0],
        )
        store = VectorStore(embedder, InMemoryIndexBackend(), settings)
        asyncio.run(store.store([
            _chunk("soc-strong", "strong match", framework="SOC2"),
            _chunk("soc-mid", "mid match", framework="SOC2"),
            _chunk("unrelated", "nothing alike", framework="SOC2"),
        ]))
        return store

    def test_unfiltered_search_uses_default_threshold(self, settings):
        store = self._store(settings)
        results = asyncio.run(store.search("query text"))

        assert [r.chunk.id for r in results] == ["soc-strong"]

    def test_filtered_search_uses_lower_threshold(self, settings):
        store = self._store(settings)
        results = asyncio.run(store.search("query text", filters=SearchFilters(framework="SOC2")))

        ids = [r.chunk.id for r in results]
        assert ids == ["soc-strong", "soc-mid"]
        assert all(r.similarity >= 0.6 for r in results)

    def test_filtered_miss_falls_back_to_unfiltered(self, settings):
        store = self._store(settings)
        results = asyncio.run(store.search("query text", filters=SearchFilters(framework="GDPR")))

        assert results
        assert results[0].chunk.metadata.framework == "SOC2"
        assert all(r.similarity >= settings.filtered_match_threshold for r in results)

    def test_results_are_sorted_and_capped(self, settings):
        store = self._store(settings)
        results = asyncio.run(store.search("query text", k=1, filters=SearchFilters(framework="SOC2")))
        assert len(results) == 1

    def test_missing_storage_returns_no_results(self, settings):
        class MissingBackend(VectorIndexBackend):
            def upsert(self, records):
                raise StorageUnavailableError("index not created")

            def query(self, vector, top_k, filters=None):
                raise StorageUnavailableError("index not created")

            def delete_by_source(self, source):
                raise StorageUnavailableError("index not created")

            def count(self):
                return 0

        store = VectorStore(MappedEmbedder(), MissingBackend(), settings)

        assert asyncio.run(store.search("anything")) == []
        assert asyncio.run(store.store([_chunk("c1", "text")])) == 0
