"""Domain models for vector-index queries and retrieval results."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-index queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"doc_id"``).
    operator:
        Comparison operator: ``eq``, ``ne``, ``in`` or ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    def matches(self, metadata: dict[str, Any]) -> bool:
        """Evaluate this filter against a metadata dict (in-process backends)."""
        actual = metadata.get(self.field)
        op = self.operator
        if op == "eq":
            return actual == self.value
        if op == "ne":
            return actual != self.value
        if op == "in":
            return actual in self.value
        if op == "nin":
            return actual not in self.value
        raise ValueError(f"Unsupported filter operator: {op!r}")


class IndexMatch(BaseModel):
    """One nearest-neighbour candidate as returned by a vector index.

    ``text`` and ``chunk_index`` are optional because backends may hold
    vectors written by other producers with incomplete metadata.
    """

    id: str
    score: float
    text: str | None = None
    chunk_index: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContextChunk(BaseModel):
    """A ranked chunk returned to the caller of a retrieval."""

    vector_id: str
    text: str
    score: float = Field(ge=0.0, le=1.0)
    chunk_index: int = Field(ge=0)

    def __str__(self) -> str:  # noqa: D105
        return f"[{self.vector_id} {self.score:.3f}] {self.text[:120]}…"
