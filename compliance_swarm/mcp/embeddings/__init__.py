from .embedding_model import Embedder, EmbeddingModel

__all__ = ["Embedder", "EmbeddingModel"]
