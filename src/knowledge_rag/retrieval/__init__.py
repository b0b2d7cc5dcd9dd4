"""
Retrieval — vector-index abstraction and ranked chunk lookup.

This module wraps the vector index behind a clean interface so that the
processing and query layers never need to know which DB is backing them.

Public surface
--------------
- :class:`RetrievalEngine` — top-k, threshold-filtered, deterministic ranking.
- :class:`VectorIndexBase` — abstract backend (subclass for Pinecone, etc.).
- :class:`ChromaVectorIndex` — default Chroma backend.
- :class:`InMemoryVectorIndex` — dependency-free backend for local runs.
- :class:`ContextChunk`, :class:`IndexMatch`, :class:`MetadataFilter` — data models.
"""

from knowledge_rag.retrieval.base import VectorIndexBase
from knowledge_rag.retrieval.memory_store import InMemoryVectorIndex
from knowledge_rag.retrieval.models import ContextChunk, IndexMatch, MetadataFilter
from knowledge_rag.retrieval.retriever import RetrievalEngine

__all__ = [
    "ChromaVectorIndex",
    "ContextChunk",
    "InMemoryVectorIndex",
    "IndexMatch",
    "MetadataFilter",
    "RetrievalEngine",
    "VectorIndexBase",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorIndex to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorIndex":
        from knowledge_rag.retrieval.chroma_store import ChromaVectorIndex

        return ChromaVectorIndex
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
