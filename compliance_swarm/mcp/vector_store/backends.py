"""
Vector index backends.

Backends are synchronous; VectorStore runs them in worker threads under
its RPC timeout.  Both backends upsert by chunk id with last-write-wins
semantics, so concurrent writers from different runs interleave safely.

  - InMemoryIndexBackend → process-local dict, cosine similarity
  - PineconeIndexBackend → Pinecone serverless index (one namespace)
"""

from __future__ import annotations

import logging
import math
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from compliance_swarm.config import Settings
from compliance_swarm.models.enums import ContentType
from compliance_swarm.models.schemas import (
    Chunk,
    ChunkMetadata,
    SearchFilters,
    SearchResult,
    VectorRecord,
)

logger = logging.getLogger(__name__)


class StorageUnavailableError(RuntimeError):
    """The backing index/table has not been initialized."""


class VectorIndexBackend(ABC):
    @abstractmethod
    def upsert(self, records: list[VectorRecord]) -> None: ...

    @abstractmethod
    def query(
        self, vector: list[float], top_k: int, filters: Optional[SearchFilters] = None
    ) -> list[SearchResult]:
        """Return up to *top_k* candidates sorted by descending similarity."""

    @abstractmethod
    def delete_by_source(self, source: str) -> int: ...

    @abstractmethod
    def count(self) -> int: ...


def cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


# ── In-memory ────────────────────────────────────────────


class InMemoryIndexBackend(VectorIndexBackend):
    """Dict-backed index; the default for local runs and tests."""

    def __init__(self) -> None:
        self._records: dict[str, VectorRecord] = {}
        self._lock = threading.Lock()

    def upsert(self, records: list[VectorRecord]) -> None:
        with self._lock:
            for record in records:
                self._records[record.chunk.id] = record

    def query(
        self, vector: list[float], top_k: int, filters: Optional[SearchFilters] = None
    ) -> list[SearchResult]:
        with self._lock:
            candidates = list(self._records.values())

        scored = [
            SearchResult(chunk=rec.chunk, similarity=cosine_similarity(vector, rec.embedding))
            for rec in candidates
            if rec.dimension == len(vector)
            and (filters is None or filters.matches(rec.chunk.metadata))
        ]
        scored.sort(key=lambda r: (-r.similarity, r.chunk.id))
        return scored[:top_k]

    def delete_by_source(self, source: str) -> int:
        with self._lock:
            doomed = [cid for cid, rec in self._records.items() if rec.chunk.metadata.source == source]
            for cid in doomed:
                del self._records[cid]
        return len(doomed)

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def get(self, chunk_id: str) -> Optional[VectorRecord]:
        with self._lock:
            return self._records.get(chunk_id)


# ── Pinecone ─────────────────────────────────────────────


class PineconeIndexBackend(VectorIndexBackend):
    """
    Pinecone serverless index.  Chunk content and metadata are stored in
    the vector metadata (Pinecone rejects null values, so unset fields are
    dropped and restored as None on read).
    """

    BATCH_SIZE = 100

    def __init__(self, settings: Settings, dimension: Callable[[], int]):
        self.settings = settings
        self._dimension = dimension
        self._index = None

    def _get_index(self):
        """Lazy-init: connect to (or create) the Pinecone index."""
        if self._index is not None:
            return self._index

        from pinecone import Pinecone, ServerlessSpec

        pc = Pinecone(api_key=self.settings.pinecone_api_key)
        index_name = self.settings.pinecone_index_name

        existing = [idx.name for idx in pc.list_indexes()]
        if index_name not in existing:
            if not self.settings.pinecone_auto_create:
                raise StorageUnavailableError(f"Pinecone index '{index_name}' does not exist")
            pc.create_index(
                name=index_name,
                dimension=self._dimension(),
                metric="cosine",
                spec=ServerlessSpec(
                    cloud=self.settings.pinecone_cloud,
                    region=self.settings.pinecone_region,
                ),
            )
            logger.info(f"[Pinecone] Created index {index_name}")

        self._index = pc.Index(index_name)
        return self._index

    def upsert(self, records: list[VectorRecord]) -> None:
        index = self._get_index()
        vectors = [
            {"id": rec.chunk.id, "values": rec.embedding, "metadata": _to_pinecone_metadata(rec.chunk)}
            for rec in records
        ]
        for start in range(0, len(vectors), self.BATCH_SIZE):
            batch = vectors[start : start + self.BATCH_SIZE]
            index.upsert(vectors=batch, namespace=self.settings.pinecone_namespace)
        logger.debug(f"[Pinecone] Upserted {len(vectors)} vectors")

    def query(
        self, vector: list[float], top_k: int, filters: Optional[SearchFilters] = None
    ) -> list[SearchResult]:
        index = self._get_index()
        kwargs: dict[str, Any] = {
            "vector": vector,
            "top_k": top_k,
            "namespace": self.settings.pinecone_namespace,
            "include_metadata": True,
        }
        if filters is not None and not filters.is_empty:
            kwargs["filter"] = {k: {"$eq": v} for k, v in filters.as_dict().items()}

        results = index.query(**kwargs)
        return [
            SearchResult(chunk=_from_pinecone_metadata(m.id, m.metadata or {}), similarity=float(m.score))
            for m in results.matches
        ]

    def delete_by_source(self, source: str) -> int:
        index = self._get_index()
        index.delete(filter={"source": {"$eq": source}}, namespace=self.settings.pinecone_namespace)
        return -1  # Pinecone does not report how many vectors matched

    def count(self) -> int:
        stats = self._get_index().describe_index_stats()
        namespace = stats.namespaces.get(self.settings.pinecone_namespace)
        return namespace.vector_count if namespace else 0


def _to_pinecone_metadata(chunk: Chunk) -> dict[str, Any]:
    meta = {k: v for k, v in chunk.metadata.model_dump(mode="json").items() if v is not None}
    meta["content"] = chunk.content
    return meta


def _from_pinecone_metadata(chunk_id: str, meta: dict[str, Any]) -> Chunk:
    line = meta.get("line_number")
    return Chunk(
        id=chunk_id,
        content=str(meta.get("content", "")),
        metadata=ChunkMetadata(
            source=str(meta.get("source", "")),
            type=ContentType(meta.get("type", ContentType.DOCUMENTATION.value)),
            framework=meta.get("framework"),
            requirement_code=meta.get("requirement_code"),
            file_path=meta.get("file_path"),
            line_number=int(line) if line is not None else None,
            chunk_index=int(meta.get("chunk_index", 0)),
            total_chunks=int(meta.get("total_chunks", 1)),
        ),
    )
