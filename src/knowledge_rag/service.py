"""Knowledge service — the entry points callers use.

Wraps the collaborators behind the operations an API layer needs: import a
file (create record → upload → enqueue), look up status, resubmit a failed
document, delete a document, query it and answer questions from it.
"""

from __future__ import annotations

import logging
import os
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from knowledge_rag.config import settings
from knowledge_rag.errors import KnowledgeError, NotFoundError, TransientIOError, ValidationError
from knowledge_rag.generation.llm import get_llm
from knowledge_rag.generation.prompts import NO_CONTEXT_ANSWER, build_answer_prompt
from knowledge_rag.idempotency import IdempotencyRegister, make_idempotency_key
from knowledge_rag.ingestion.extractor import check_extension
from knowledge_rag.messaging.queue import QueueBase
from knowledge_rag.models import DocumentRecord, ProcessingMessage, namespace_for, utcnow
from knowledge_rag.processing.states import DocumentStatus
from knowledge_rag.retrieval.base import VectorIndexBase
from knowledge_rag.retrieval.models import ContextChunk, MetadataFilter
from knowledge_rag.retrieval.retriever import RetrievalEngine
from knowledge_rag.storage.object_store import ObjectStoreBase, object_key_for
from knowledge_rag.storage.repository import DocumentRepositoryBase
from knowledge_rag.timeouts import call_with_timeout

logger = logging.getLogger(__name__)

# Rough throughput used for completion estimates, including chunking overhead.
_BYTES_PER_MINUTE = 512 * 1024


class ImportReceipt(BaseModel):
    """Returned to the caller of :meth:`KnowledgeService.import_document`."""

    doc_id: str
    status: DocumentStatus
    message: str
    estimated_completion: datetime | None = None


class SourceInfo(BaseModel):
    """A chunk that contributed to an answer."""

    vector_id: str
    chunk_index: int
    score: float


class ChatAnswer(BaseModel):
    """Returned by :meth:`KnowledgeService.answer`."""

    answer: str
    doc_id: str
    sources: list[SourceInfo] = []
    context_chunks_used: int = 0
    min_score: float | None = None
    max_score: float | None = None


def estimate_completion_time(size_bytes: int, now: datetime | None = None) -> datetime:
    """At least one minute, plus a minute per 512 KiB."""
    minutes = max(1, size_bytes // _BYTES_PER_MINUTE)
    return (now or utcnow()) + timedelta(minutes=minutes)


def validate_file_path(file_path: str, max_file_bytes: int) -> Path:
    """Check that *file_path* names a readable, supported, non-oversize file."""
    if not file_path or not file_path.strip():
        raise ValidationError("File path cannot be empty", code="INVALID_FILE_PATH")
    path = Path(file_path)
    if not path.is_file():
        raise NotFoundError(f"File not found: {file_path}", code="FILE_NOT_FOUND")
    if not os.access(path, os.R_OK):
        raise ValidationError(f"File is not readable: {file_path}", code="FILE_NOT_READABLE")
    check_extension(path.name)
    size = path.stat().st_size
    if size > max_file_bytes:
        raise ValidationError(f"File size exceeds {max_file_bytes} bytes", code="FILE_TOO_LARGE")
    return path


class KnowledgeService:
    """Facade over storage, queue, idempotency register and retrieval."""

    def __init__(
        self,
        *,
        repository: DocumentRepositoryBase,
        object_store: ObjectStoreBase,
        queue: QueueBase,
        index: VectorIndexBase,
        retriever: RetrievalEngine,
        register: IdempotencyRegister | None = None,
        max_file_bytes: int = settings.max_file_bytes,
        llm: Any = None,
        llm_timeout: float | None = settings.collaborator_timeout_seconds,
    ) -> None:
        self._repository = repository
        self._object_store = object_store
        self._queue = queue
        self._index = index
        self._retriever = retriever
        self._register = register or IdempotencyRegister()
        self.max_file_bytes = max_file_bytes
        self._llm = llm
        self._llm_timeout = llm_timeout

    # -- import ---------------------------------------------------------------

    def import_document(
        self,
        owner_id: str,
        file_path: str,
        name: str,
        description: str | None = None,
        *,
        client_token: str | None = None,
    ) -> ImportReceipt:
        """Register, upload and enqueue *file_path* for processing.

        With a *client_token*, repeated identical requests return the first
        receipt instead of importing the file again.
        """
        if not owner_id:
            raise ValidationError("owner_id is required", code="MISSING_OWNER")
        if not name or not name.strip():
            raise ValidationError("name is required", code="MISSING_NAME")

        def _run() -> ImportReceipt:
            return self._import(owner_id, file_path, name.strip(), description)

        if client_token is None:
            return _run()

        request = {"file": file_path, "name": name, "description": description}
        key = make_idempotency_key(client_token, owner_id, request)
        return self._register.execute_once(key, _run)

    def _import(self, owner_id: str, file_path: str, name: str, description: str | None) -> ImportReceipt:
        path = validate_file_path(file_path, self.max_file_bytes)
        size = path.stat().st_size
        doc_id = f"kb_{uuid.uuid4().hex[:8]}"
        filename = path.name

        record = DocumentRecord(
            id=doc_id,
            owner_id=owner_id,
            name=name,
            description=(description or "").strip() or None,
            source_filename=filename,
            size_bytes=size,
            status=DocumentStatus.UPLOADING,
        )
        self._repository.create(record)
        logger.info("Processing import request: doc_id=%s file=%s owner=%s", doc_id, filename, owner_id)

        key = object_key_for(owner_id, doc_id, filename)
        try:
            self._object_store.upload(
                key,
                path.read_bytes(),
                metadata={
                    "owner-id": owner_id,
                    "doc-id": doc_id,
                    "original-filename": filename,
                    "upload-timestamp": utcnow().isoformat(),
                },
            )
        except Exception:
            logger.exception("Upload failed for document %s", doc_id)
            self._repository.transition(doc_id, DocumentStatus.FAILED)
            raise

        self._repository.transition(doc_id, DocumentStatus.PENDING)
        message = ProcessingMessage(
            doc_id=doc_id,
            owner_id=owner_id,
            object_key=key,
            original_filename=filename,
            file_size=size,
        )
        message_id = self._enqueue(message, "KnowledgeProcessing")
        logger.info("Sent processing message: message_id=%s doc_id=%s", message_id, doc_id)

        return ImportReceipt(
            doc_id=doc_id,
            status=DocumentStatus.PENDING,
            message="File uploaded successfully. Processing will begin shortly.",
            estimated_completion=estimate_completion_time(size),
        )

    def _enqueue(self, message: ProcessingMessage, message_type: str) -> str:
        try:
            return self._queue.send(
                message.to_json(),
                attributes={"MessageType": message_type, "OwnerId": message.owner_id, "DocId": message.doc_id},
            )
        except Exception:
            logger.exception("Failed to enqueue document %s", message.doc_id)
            self._repository.transition(message.doc_id, DocumentStatus.FAILED)
            raise

    # -- status / recovery ----------------------------------------------------

    def get_status(self, doc_id: str) -> DocumentStatus:
        return self._repository.status_of(doc_id)

    def get_document(self, owner_id: str, doc_id: str) -> DocumentRecord:
        """Return the record, enforcing ownership."""
        record = self._repository.get(doc_id)
        if record is None or record.owner_id != owner_id:
            raise NotFoundError(f"Document not found: {doc_id}", code="DOCUMENT_NOT_FOUND")
        return record

    def resubmit(self, owner_id: str, doc_id: str) -> ImportReceipt:
        """Manually re-run a ``failed`` or ``completed`` document with a fresh retry budget."""
        record = self.get_document(owner_id, doc_id)
        self._repository.transition(doc_id, DocumentStatus.PENDING)
        message = ProcessingMessage(
            doc_id=doc_id,
            owner_id=owner_id,
            object_key=object_key_for(owner_id, doc_id, record.source_filename),
            original_filename=record.source_filename,
            file_size=record.size_bytes,
        )
        self._enqueue(message, "KnowledgeProcessing")
        logger.info("Resubmitted document %s (was %s)", doc_id, record.status.value)
        return ImportReceipt(
            doc_id=doc_id,
            status=DocumentStatus.PENDING,
            message="Document resubmitted for processing.",
            estimated_completion=estimate_completion_time(record.size_bytes),
        )

    def delete_document(self, owner_id: str, doc_id: str) -> None:
        """Administrative delete: vectors, stored file and status record."""
        record = self.get_document(owner_id, doc_id)
        self._index.delete_where(namespace_for(owner_id), [MetadataFilter.equals("doc_id", doc_id)])
        self._object_store.delete(object_key_for(owner_id, doc_id, record.source_filename))
        self._repository.delete(doc_id)
        logger.info("Deleted document %s for owner %s", doc_id, owner_id)

    # -- query ----------------------------------------------------------------

    def _require_ready(self, owner_id: str, doc_id: str) -> DocumentRecord:
        record = self.get_document(owner_id, doc_id)
        if record.status != DocumentStatus.COMPLETED:
            raise ValidationError(
                f"Knowledge base is not ready. Current status: {record.status.value}",
                code="KNOWLEDGE_BASE_NOT_READY",
            )
        return record

    def query(
        self,
        owner_id: str,
        doc_id: str,
        query: str,
        *,
        top_k: int = 5,
        score_threshold: float = 0.0,
    ) -> list[ContextChunk]:
        """Embed *query* and return the best chunks of an owned, completed document.

        Raises
        ------
        NotFoundError
            The document does not exist or belongs to someone else.
        ValidationError
            ``KNOWLEDGE_BASE_NOT_READY`` while the document is not ``completed``.
        """
        self._require_ready(owner_id, doc_id)
        return self._retriever.retrieve_by_text(owner_id, doc_id, query, top_k=top_k, score_threshold=score_threshold)

    def answer(
        self,
        owner_id: str,
        doc_id: str,
        question: str,
        *,
        top_k: int = 5,
        score_threshold: float = 0.0,
    ) -> ChatAnswer:
        """Answer *question* from the document's best chunks.

        With no chunk above *score_threshold* the model is not called and a
        fixed fallback answer is returned.
        """
        if not question or not question.strip():
            raise ValidationError("Question cannot be empty", code="EMPTY_QUESTION")
        chunks = self.query(owner_id, doc_id, question, top_k=top_k, score_threshold=score_threshold)
        if not chunks:
            logger.info("No context above threshold for doc_id=%s; returning fallback answer", doc_id)
            return ChatAnswer(answer=NO_CONTEXT_ANSWER, doc_id=doc_id)

        llm = self._llm or get_llm()
        messages = build_answer_prompt(question, chunks)
        try:
            response = call_with_timeout(llm.invoke, self._llm_timeout, messages, description="llm.invoke")
        except KnowledgeError:
            raise
        except Exception as exc:
            logger.exception("Answer generation failed for doc_id=%s", doc_id)
            raise TransientIOError(f"Answer generation failed: {exc}", code="LLM_UNAVAILABLE") from exc

        scores = [chunk.score for chunk in chunks]
        logger.info("Answered question for doc_id=%s using %d chunks", doc_id, len(chunks))
        return ChatAnswer(
            answer=str(response.content).strip(),
            doc_id=doc_id,
            sources=[
                SourceInfo(vector_id=chunk.vector_id, chunk_index=chunk.chunk_index, score=chunk.score)
                for chunk in chunks
            ],
            context_chunks_used=len(chunks),
            min_score=min(scores),
            max_score=max(scores),
        )
