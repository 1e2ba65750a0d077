from .backends import (
    InMemoryIndexBackend,
    PineconeIndexBackend,
    StorageUnavailableError,
    VectorIndexBackend,
)
from .store import EmbeddingTimeoutError, VectorStore, VectorStoreTimeoutError

__all__ = [
    "EmbeddingTimeoutError",
    "InMemoryIndexBackend",
    "PineconeIndexBackend",
    "StorageUnavailableError",
    "VectorIndexBackend",
    "VectorStore",
    "VectorStoreTimeoutError",
]
