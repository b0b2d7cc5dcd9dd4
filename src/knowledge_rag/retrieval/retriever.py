"""Retrieval engine — namespace-scoped top-k search with deterministic ranking.

Usage::

    from knowledge_rag.retrieval.retriever import RetrievalEngine

    engine = RetrievalEngine(index, embedder)
    chunks = engine.retrieve_by_text("user-1", "kb_1a2b3c4d", "What is the refund policy?", top_k=3)
    for c in chunks:
        print(c.vector_id, c.score, c.text[:80])
"""

from __future__ import annotations

import logging

from knowledge_rag.config import settings
from knowledge_rag.errors import KnowledgeError, TransientIOError, ValidationError
from knowledge_rag.ingestion.embedder import EmbeddingClientBase
from knowledge_rag.models import namespace_for
from knowledge_rag.retrieval.base import VectorIndexBase
from knowledge_rag.retrieval.models import ContextChunk, IndexMatch, MetadataFilter
from knowledge_rag.timeouts import call_with_timeout

logger = logging.getLogger(__name__)

MIN_TOP_K = 1
MAX_TOP_K = 100


class RetrievalEngine:
    """Query-time counterpart of the ingestion pipeline.

    Parameters
    ----------
    index:
        Vector index the chunks were upserted into.
    embedder:
        Needed only for :meth:`retrieve_by_text`.
    timeout:
        Per-call timeout for index and embedding calls.
    """

    def __init__(
        self,
        index: VectorIndexBase,
        embedder: EmbeddingClientBase | None = None,
        *,
        timeout: float | None = settings.collaborator_timeout_seconds,
    ) -> None:
        self._index = index
        self._embedder = embedder
        self._timeout = timeout

    # -- public API -----------------------------------------------------------

    def retrieve(
        self,
        owner_id: str,
        doc_id: str,
        query_embedding: list[float],
        *,
        top_k: int = 5,
        score_threshold: float = 0.0,
    ) -> list[ContextChunk]:
        """Return up to *top_k* chunks of *doc_id* scoring at least *score_threshold*.

        Results are ordered by score descending, ties by ascending
        ``chunk_index``.  An empty list means no relevant chunk; index
        failures propagate to the caller without retry.
        """
        _validate_query(owner_id, doc_id, query_embedding, top_k, score_threshold)

        namespace = namespace_for(owner_id)
        filters = [MetadataFilter.equals("doc_id", doc_id)]
        logger.debug("Querying namespace=%s doc_id=%s top_k=%d", namespace, doc_id, top_k)

        try:
            matches = call_with_timeout(
                self._index.query,
                self._timeout,
                namespace,
                query_embedding,
                top_k=top_k,
                filters=filters,
                description="vector index query",
            )
        except KnowledgeError:
            raise
        except Exception as exc:
            logger.error("Vector index query failed for doc %s: %s", doc_id, exc)
            raise TransientIOError(f"Vector index query failed: {exc}", code="INDEX_UNAVAILABLE") from exc

        chunks = rank_matches(matches, top_k=top_k, score_threshold=score_threshold)
        logger.debug("Found %d relevant chunks for doc %s (of %d candidates)", len(chunks), doc_id, len(matches))
        return chunks

    def retrieve_by_text(
        self,
        owner_id: str,
        doc_id: str,
        query: str,
        *,
        top_k: int = 5,
        score_threshold: float = 0.0,
    ) -> list[ContextChunk]:
        """Embed *query* and delegate to :meth:`retrieve`."""
        if self._embedder is None:
            raise ValueError("RetrievalEngine was built without an embedding client")
        if not query or not query.strip():
            raise ValidationError("Query must not be blank", code="EMPTY_QUERY")

        try:
            embedding = call_with_timeout(
                self._embedder.embed_query, self._timeout, query, description="query embedding"
            )
        except KnowledgeError:
            raise
        except Exception as exc:
            raise TransientIOError(f"Query embedding failed: {exc}", code="EMBEDDING_UNAVAILABLE") from exc

        return self.retrieve(owner_id, doc_id, embedding, top_k=top_k, score_threshold=score_threshold)


def rank_matches(matches: list[IndexMatch], *, top_k: int, score_threshold: float) -> list[ContextChunk]:
    """Drop unusable or low-scoring candidates, sort, and truncate."""
    chunks: list[ContextChunk] = []
    for match in matches:
        if not match.text or not match.text.strip():
            continue
        if match.score < score_threshold:
            continue
        chunks.append(
            ContextChunk(
                vector_id=match.id,
                text=match.text,
                score=min(1.0, max(0.0, match.score)),
                chunk_index=match.chunk_index if match.chunk_index is not None else 0,
            )
        )
    chunks.sort(key=lambda c: (-c.score, c.chunk_index))
    return chunks[:top_k]


def _validate_query(
    owner_id: str,
    doc_id: str,
    query_embedding: list[float],
    top_k: int,
    score_threshold: float,
) -> None:
    if not owner_id or not doc_id:
        raise ValidationError("owner_id and doc_id are required", code="MISSING_ID")
    if not query_embedding:
        raise ValidationError("query_embedding must not be empty", code="EMPTY_EMBEDDING")
    if not MIN_TOP_K <= top_k <= MAX_TOP_K:
        raise ValidationError(f"top_k must be in [{MIN_TOP_K}, {MAX_TOP_K}], got {top_k}", code="INVALID_TOP_K")
    if not 0.0 <= score_threshold <= 1.0:
        raise ValidationError(
            f"score_threshold must be in [0, 1], got {score_threshold}", code="INVALID_SCORE_THRESHOLD"
        )
