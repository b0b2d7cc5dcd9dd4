"""Domain records shared across storage, messaging and processing."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator

from knowledge_rag.processing.states import DocumentStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def namespace_for(owner_id: str) -> str:
    """Vector-index namespace isolating one owner's vectors."""
    return owner_id


def vector_id_for(doc_id: str, chunk_index: int) -> str:
    """Deterministic vector id so re-processing overwrites instead of duplicating."""
    return f"{doc_id}_chunk_{chunk_index}"


class DocumentRecord(BaseModel):
    """Status record for one imported document.

    ``owner_id`` and ``namespace`` are fixed at creation; ``status`` is only
    changed through the repository's transition method.
    """

    id: str
    owner_id: str
    name: str
    description: str | None = None
    source_filename: str
    size_bytes: int = Field(ge=0)
    status: DocumentStatus = DocumentStatus.UPLOADING
    namespace: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def model_post_init(self, __context: object) -> None:
        if not self.namespace:
            self.namespace = namespace_for(self.owner_id)


class ProcessingMessage(BaseModel):
    """Queue payload that triggers one processing attempt."""

    model_config = ConfigDict(frozen=True)

    doc_id: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    object_key: str = Field(min_length=1)
    original_filename: str = Field(min_length=1)
    file_size: int = Field(ge=0)
    created_at: datetime = Field(default_factory=utcnow)
    retry_count: int = Field(default=0, ge=0)

    def next_attempt(self) -> ProcessingMessage:
        """Copy of this message for the next retry."""
        return self.model_copy(update={"retry_count": self.retry_count + 1})

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, body: str | bytes) -> ProcessingMessage:
        return cls.model_validate_json(body)


class VectorMetadata(BaseModel):
    """Typed payload stored next to every vector."""

    owner_id: str
    doc_id: str
    text: str
    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(ge=1)
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("text")
    @classmethod
    def _text_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("chunk text must not be blank")
        return value


class VectorRecord(BaseModel):
    """One upsertable vector: ``{id, values, metadata}``."""

    id: str
    values: list[float] = Field(min_length=1)
    metadata: VectorMetadata

    @classmethod
    def for_chunk(
        cls,
        *,
        owner_id: str,
        doc_id: str,
        text: str,
        chunk_index: int,
        total_chunks: int,
        embedding: list[float],
        created_at: datetime | None = None,
    ) -> VectorRecord:
        return cls(
            id=vector_id_for(doc_id, chunk_index),
            values=embedding,
            metadata=VectorMetadata(
                owner_id=owner_id,
                doc_id=doc_id,
                text=text,
                chunk_index=chunk_index,
                total_chunks=total_chunks,
                created_at=created_at or utcnow(),
            ),
        )
