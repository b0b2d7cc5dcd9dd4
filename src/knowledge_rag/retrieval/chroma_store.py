"""Chroma implementation of the vector-index abstraction.

Chroma has no namespaces, so each namespace maps to its own collection
(``<prefix>-<namespace>``) created with cosine distance.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Any

import chromadb

from knowledge_rag.config import settings
from knowledge_rag.models import VectorRecord
from knowledge_rag.retrieval.base import VectorIndexBase
from knowledge_rag.retrieval.models import IndexMatch, MetadataFilter

logger = logging.getLogger(__name__)

_OP_MAP = {
    "eq": "$eq",
    "ne": "$ne",
    "in": "$in",
    "nin": "$nin",
}


def _build_chroma_where(filters: list[MetadataFilter] | None) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _collection_name(prefix: str, namespace: str) -> str:
    """Chroma-safe collection name, unique per namespace."""
    slug = re.sub(r"[^A-Za-z0-9_-]+", "-", namespace).strip("-_")[:32] or "ns"
    digest = hashlib.sha1(namespace.encode()).hexdigest()[:8]
    return f"{prefix}-{slug}-{digest}"


def _to_chroma_metadata(record: VectorRecord) -> dict[str, Any]:
    # Chroma metadata values must be flat str/int/float/bool
    meta = record.metadata
    return {
        "owner_id": meta.owner_id,
        "doc_id": meta.doc_id,
        "chunk_index": meta.chunk_index,
        "total_chunks": meta.total_chunks,
        "created_at": meta.created_at.isoformat(),
    }


class ChromaVectorIndex(VectorIndexBase):
    """Chroma-backed vector index.

    Parameters
    ----------
    collection_prefix:
        Prefix for the per-namespace collections.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    client:
        Pre-built Chroma client (e.g. ``chromadb.EphemeralClient()``);
        when given, *host* and *port* are ignored.
    """

    def __init__(
        self,
        collection_prefix: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        client: Any = None,
    ) -> None:
        self.collection_prefix = collection_prefix
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collections: dict[str, Any] = {}

    def _collection(self, namespace: str) -> Any:
        collection = self._collections.get(namespace)
        if collection is None:
            collection = self._client.get_or_create_collection(
                name=_collection_name(self.collection_prefix, namespace),
                metadata={"hnsw:space": "cosine"},
            )
            collection = self._collections.setdefault(namespace, collection)
        return collection

    # -- VectorIndexBase overrides --------------------------------------------

    def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        if not records:
            return 0
        self._collection(namespace).upsert(
            ids=[r.id for r in records],
            embeddings=[r.values for r in records],
            documents=[r.metadata.text for r in records],
            metadatas=[_to_chroma_metadata(r) for r in records],
        )
        logger.debug("Upserted %d vectors into namespace %s", len(records), namespace)
        return len(records)

    def query(
        self,
        namespace: str,
        vector: list[float],
        *,
        top_k: int,
        filters: list[MetadataFilter] | None = None,
    ) -> list[IndexMatch]:
        results = self._collection(namespace).query(
            query_embeddings=[vector],
            n_results=top_k,
            where=_build_chroma_where(filters),
            include=["documents", "metadatas", "distances"],
        )

        ids = (results.get("ids") or [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        matches: list[IndexMatch] = []
        for vector_id, content, meta, dist in zip(ids, docs, metas, distances):
            meta = dict(meta or {})
            # Cosine distance is 1 - similarity; clamp to [0, 1].
            score = min(1.0, max(0.0, 1.0 - float(dist)))
            chunk_index = meta.get("chunk_index")
            matches.append(
                IndexMatch(
                    id=vector_id,
                    score=score,
                    text=content,
                    chunk_index=int(chunk_index) if chunk_index is not None else None,
                    metadata=meta,
                )
            )
        return matches

    def delete_where(self, namespace: str, filters: list[MetadataFilter]) -> None:
        self._collection(namespace).delete(where=_build_chroma_where(filters))

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
