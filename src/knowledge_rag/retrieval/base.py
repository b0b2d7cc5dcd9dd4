"""Abstract base class for vector-index backends.

Adding a new backend (Pinecone, Qdrant …) only requires subclassing
:class:`VectorIndexBase` and implementing the abstract methods.  The
processing and retrieval layers are backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from knowledge_rag.models import VectorRecord
from knowledge_rag.retrieval.models import IndexMatch, MetadataFilter


class VectorIndexBase(ABC):
    """Namespace-scoped vector index under cosine similarity.

    Scores returned by :meth:`query` are similarities in ``[0, 1]``
    (higher = more similar).
    """

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        """Insert or overwrite *records* by id; return the number written."""
        ...

    @abstractmethod
    def query(
        self,
        namespace: str,
        vector: list[float],
        *,
        top_k: int,
        filters: list[MetadataFilter] | None = None,
    ) -> list[IndexMatch]:
        """Return up to *top_k* nearest neighbours of *vector*.

        Parameters
        ----------
        namespace:
            Partition to search; other namespaces are never visible.
        vector:
            Dense query embedding.
        top_k:
            Maximum number of candidates.
        filters:
            Optional metadata filters applied server-side.
        """
        ...

    @abstractmethod
    def delete_where(self, namespace: str, filters: list[MetadataFilter]) -> None:
        """Delete every vector in *namespace* matching *filters*."""
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...
