"""
Embedders — turn regulation chunks and retrieval queries into vectors.

The production embedder wraps a sentence-transformers model (384-d
all-MiniLM-L6-v2 unless EMBEDDING_MODEL says otherwise).  Encoding is
blocking; VectorStore pushes it onto a worker thread and bounds it with
the configured embedding timeout.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from compliance_swarm.config import Settings

logger = logging.getLogger(__name__)


class Embedder(ABC):
    """Text-to-vector contract shared by the real model and test fakes."""

    @property
    @abstractmethod
    def dimension(self) -> int: ...

    @abstractmethod
    def embed(self, texts: list[str]) -> list[list[float]]: ...

    def embed_single(self, text: str) -> list[float]:
        return self.embed([text])[0]


class EmbeddingModel(Embedder):
    """sentence-transformers backed embedder; the model loads on first call."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._encoder = None
        self._dim: int | None = None

    def _ensure_encoder(self):
        if self._encoder is not None:
            return self._encoder

        from sentence_transformers import SentenceTransformer

        name = self.settings.embedding_model
        self._encoder = SentenceTransformer(name)
        self._dim = self._encoder.get_sentence_embedding_dimension()
        logger.info(f"[Embeddings] Model {name} ready ({self._dim} dimensions)")
        return self._encoder

    @property
    def dimension(self) -> int:
        self._ensure_encoder()
        return self._dim  # type: ignore[return-value]

    def embed(self, texts: list[str]) -> list[list[float]]:
        vectors = self._ensure_encoder().encode(texts, show_progress_bar=False)
        return [list(map(float, v)) for v in vectors]
