"""In-process vector index for local runs and tests."""

from __future__ import annotations

import math
import threading

from knowledge_rag.models import VectorRecord
from knowledge_rag.retrieval.base import VectorIndexBase
from knowledge_rag.retrieval.models import IndexMatch, MetadataFilter


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Dimension mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


class InMemoryVectorIndex(VectorIndexBase):
    """Dict-backed index; brute-force cosine search per namespace."""

    def __init__(self) -> None:
        self._namespaces: dict[str, dict[str, VectorRecord]] = {}
        self._lock = threading.Lock()

    def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        with self._lock:
            space = self._namespaces.setdefault(namespace, {})
            for record in records:
                space[record.id] = record
        return len(records)

    def query(
        self,
        namespace: str,
        vector: list[float],
        *,
        top_k: int,
        filters: list[MetadataFilter] | None = None,
    ) -> list[IndexMatch]:
        with self._lock:
            candidates = list(self._namespaces.get(namespace, {}).values())

        matches: list[IndexMatch] = []
        for record in candidates:
            meta = record.metadata.model_dump()
            if filters and not all(f.matches(meta) for f in filters):
                continue
            score = min(1.0, max(0.0, cosine_similarity(vector, record.values)))
            matches.append(
                IndexMatch(
                    id=record.id,
                    score=score,
                    text=record.metadata.text,
                    chunk_index=record.metadata.chunk_index,
                    metadata=meta,
                )
            )
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    def delete_where(self, namespace: str, filters: list[MetadataFilter]) -> None:
        with self._lock:
            space = self._namespaces.get(namespace, {})
            doomed = [rid for rid, rec in space.items() if all(f.matches(rec.metadata.model_dump()) for f in filters)]
            for rid in doomed:
                del space[rid]

    def health_check(self) -> bool:
        return True

    # -- inspection helpers ---------------------------------------------------

    def records(self, namespace: str) -> dict[str, VectorRecord]:
        """Snapshot of everything stored in *namespace*."""
        with self._lock:
            return dict(self._namespaces.get(namespace, {}))
