"""
Retrieval: chunking strategies and the Corrective RAG loop.
"""

from .chunking import (
    CodeStrategy,
    DocumentMetadata,
    FixedStrategy,
    RequirementStrategy,
    SemanticStrategy,
    chunk,
)
from .corrective_rag import CorrectiveRAG, CorrectiveRAGResult

__all__ = [
    "CodeStrategy",
    "CorrectiveRAG",
    "CorrectiveRAGResult",
    "DocumentMetadata",
    "FixedStrategy",
    "RequirementStrategy",
    "SemanticStrategy",
    "chunk",
]
