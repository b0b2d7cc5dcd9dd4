"""Document processor — one queue message in, one status decision out.

Pipeline per attempt::

    processing → download → extract → chunk → (embed → upsert) per batch → completed

Failures are classified with :func:`~knowledge_rag.processing.states.decide_failure`
and turned into either a delayed re-enqueue (``retrying``) or a terminal
``failed`` status.  Vector ids are derived from ``(doc_id, chunk_index)``, so
a duplicate or concurrent delivery of the same message overwrites the same
vectors instead of adding new ones.
"""

from __future__ import annotations

import logging
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from knowledge_rag.config import settings
from knowledge_rag.errors import (
    ExhaustedRetriesError,
    InvalidTransition,
    KnowledgeError,
    NotFoundError,
    TransientIOError,
    ValidationError,
)
from knowledge_rag.ingestion.chunker import batched, chunk_text
from knowledge_rag.ingestion.embedder import EmbeddingClientBase
from knowledge_rag.ingestion.extractor import TextExtractor
from knowledge_rag.messaging.queue import QueueBase
from knowledge_rag.models import ProcessingMessage, VectorRecord, namespace_for
from knowledge_rag.processing.states import DocumentStatus, decide_failure
from knowledge_rag.retrieval.base import VectorIndexBase
from knowledge_rag.storage.object_store import ObjectStoreBase
from knowledge_rag.storage.repository import DocumentRepositoryBase
from knowledge_rag.timeouts import call_with_timeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessingOutcome:
    """Result of handling one message.

    Attributes
    ----------
    doc_id:
        Document the message referred to.
    status:
        Status after handling.  ``NOT_FOUND`` when the record is missing;
        the record's unchanged status when the message was skipped.
    chunks_indexed:
        Vectors upserted by this attempt.
    retry_delay_seconds:
        Delay of the re-enqueued message, if any.
    error:
        The failure that drove a ``retrying``/``failed`` decision.
    skipped:
        ``True`` when the message was stale (document already terminal).
    """

    doc_id: str
    status: DocumentStatus
    chunks_indexed: int = 0
    retry_delay_seconds: int | None = None
    error: BaseException | None = None
    skipped: bool = False


class DocumentProcessor:
    """Runs the ingestion pipeline for a :class:`ProcessingMessage`.

    Parameters
    ----------
    repository, object_store, extractor, embedder, index, queue:
        Collaborators.  The queue is only used to re-enqueue retries.
    chunk_max_size, chunk_overlap:
        Chunking parameters.
    batch_size:
        Chunks embedded and upserted together.
    max_retries, base_delay:
        Re-enqueue budget and backoff base (seconds).
    upsert_attempts, upsert_backoff:
        Internal attempts per upsert call and the backoff base between them.
    timeout:
        Per-call timeout for every collaborator call.
    sleep:
        Injectable sleep used between upsert attempts.
    """

    def __init__(
        self,
        *,
        repository: DocumentRepositoryBase,
        object_store: ObjectStoreBase,
        extractor: TextExtractor,
        embedder: EmbeddingClientBase,
        index: VectorIndexBase,
        queue: QueueBase,
        chunk_max_size: int = settings.chunk_max_size,
        chunk_overlap: int = settings.chunk_overlap,
        batch_size: int = settings.upsert_batch_size,
        max_retries: int = settings.max_retries,
        base_delay: int = settings.retry_base_delay_seconds,
        upsert_attempts: int = settings.upsert_attempts,
        upsert_backoff: float = settings.upsert_backoff_seconds,
        timeout: float | None = settings.collaborator_timeout_seconds,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if chunk_overlap >= chunk_max_size:
            raise ValueError(f"chunk_overlap ({chunk_overlap}) must be < chunk_max_size ({chunk_max_size})")
        self._repository = repository
        self._object_store = object_store
        self._extractor = extractor
        self._embedder = embedder
        self._index = index
        self._queue = queue
        self.chunk_max_size = chunk_max_size
        self.chunk_overlap = chunk_overlap
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.upsert_attempts = max(1, upsert_attempts)
        self.upsert_backoff = upsert_backoff
        self._timeout = timeout
        self._sleep = sleep

    # -- public API -----------------------------------------------------------

    def process(self, message: ProcessingMessage) -> ProcessingOutcome:
        """Handle one delivery of *message* and return the resulting decision."""
        doc_id = message.doc_id
        logger.info(
            "Received processing message: doc_id=%s object_key=%s retry_count=%d",
            doc_id,
            message.object_key,
            message.retry_count,
        )

        try:
            self._repository.transition(doc_id, DocumentStatus.PROCESSING)
        except NotFoundError:
            logger.warning("Document %s not found; dropping message", doc_id)
            return ProcessingOutcome(doc_id=doc_id, status=DocumentStatus.NOT_FOUND, skipped=True)
        except InvalidTransition as exc:
            logger.info("Skipping stale message for document %s (status=%s)", doc_id, exc.current)
            return ProcessingOutcome(doc_id=doc_id, status=DocumentStatus(exc.current), skipped=True)

        try:
            indexed = self.ingest(message)
        except Exception as exc:
            logger.error("Error processing document %s: %s", doc_id, exc, exc_info=not isinstance(exc, KnowledgeError))
            return self._handle_failure(message, exc)

        return self._finish(doc_id, DocumentStatus.COMPLETED, chunks_indexed=indexed)

    def ingest(self, message: ProcessingMessage) -> int:
        """Download, extract, chunk, embed and upsert; return vectors written.

        Does not touch the document status.  The temporary directory is
        removed on every exit path.
        """
        with tempfile.TemporaryDirectory(prefix="knowledge-") as tmpdir:
            data = call_with_timeout(
                self._object_store.download, self._timeout, message.object_key, description="object store download"
            )
            local_path = Path(tmpdir) / Path(message.original_filename).name
            local_path.write_bytes(data)
            logger.info("Downloaded %s -> %s (%d bytes)", message.object_key, local_path, len(data))

            text = call_with_timeout(self._extractor.extract, self._timeout, local_path, description="text extraction")

        chunks = chunk_text(text, self.chunk_max_size, self.chunk_overlap)
        if not chunks:
            logger.warning("No chunks generated for document %s", message.doc_id)
            return 0

        namespace = namespace_for(message.owner_id)
        total = len(chunks)
        written = 0
        for start, batch in batched(chunks, self.batch_size):
            records = self._build_records(message, batch, start, total)
            written += self._upsert_with_attempts(namespace, records, message.doc_id)

        logger.info("Upserted %d chunks for document %s", written, message.doc_id)
        return written

    # -- internals ------------------------------------------------------------

    def _build_records(
        self,
        message: ProcessingMessage,
        batch: list[str],
        start: int,
        total: int,
    ) -> list[VectorRecord]:
        embeddings = call_with_timeout(
            self._embedder.embed_documents, self._timeout, batch, description="embedding batch"
        )
        if len(embeddings) != len(batch):
            raise TransientIOError(
                f"Embedding service returned {len(embeddings)} vectors for {len(batch)} chunks",
                code="EMBEDDING_MISMATCH",
            )
        return [
            VectorRecord.for_chunk(
                owner_id=message.owner_id,
                doc_id=message.doc_id,
                text=chunk,
                chunk_index=start + offset,
                total_chunks=total,
                embedding=list(embedding),
                created_at=message.created_at,
            )
            for offset, (chunk, embedding) in enumerate(zip(batch, embeddings))
        ]

    def _upsert_with_attempts(self, namespace: str, records: list[VectorRecord], doc_id: str) -> int:
        last_exc: Exception | None = None
        for attempt in range(1, self.upsert_attempts + 1):
            try:
                return call_with_timeout(
                    self._index.upsert, self._timeout, namespace, records, description="vector index upsert"
                )
            except ValidationError:
                raise
            except Exception as exc:
                last_exc = exc
                if attempt < self.upsert_attempts:
                    wait = self.upsert_backoff * 2 ** (attempt - 1)
                    logger.warning(
                        "Upsert attempt %d/%d for %s failed (wait %.1fs): %s",
                        attempt,
                        self.upsert_attempts,
                        doc_id,
                        wait,
                        exc,
                    )
                    self._sleep(wait)
        raise TransientIOError(
            f"Upsert failed for document {doc_id} after {self.upsert_attempts} attempts: {last_exc}",
            code="UPSERT_FAILED",
        ) from last_exc

    def _handle_failure(self, message: ProcessingMessage, error: Exception) -> ProcessingOutcome:
        doc_id = message.doc_id
        decision = decide_failure(
            message.retry_count,
            error,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
        )

        if not decision.should_retry:
            if decision.exhausted:
                error = ExhaustedRetriesError(doc_id, message.retry_count, error)
                logger.error("Max retries exceeded for document %s, marking as failed", doc_id)
            else:
                logger.error("Permanent failure for document %s: %s", doc_id, error)
            return self._finish(doc_id, DocumentStatus.FAILED, error=error)

        try:
            self._repository.transition(doc_id, DocumentStatus.RETRYING)
        except (InvalidTransition, NotFoundError) as exc:
            # A concurrent copy already settled this document.
            logger.info("Not retrying document %s: %s", doc_id, exc)
            return ProcessingOutcome(doc_id=doc_id, status=self._repository.status_of(doc_id), error=error)

        retry = message.next_attempt()
        logger.info(
            "Scheduling retry for document %s (attempt %d/%d), delay: %ds",
            doc_id,
            retry.retry_count,
            self.max_retries,
            decision.delay_seconds,
        )
        try:
            self._queue.send(
                retry.to_json(),
                delay_seconds=decision.delay_seconds,
                attributes={"MessageType": "KnowledgeProcessingRetry", "RetryCount": str(retry.retry_count)},
            )
        except Exception as exc:
            logger.error("Failed to re-enqueue document %s; marking as failed: %s", doc_id, exc)
            return self._finish(doc_id, DocumentStatus.FAILED, error=exc)

        return ProcessingOutcome(
            doc_id=doc_id,
            status=DocumentStatus.RETRYING,
            retry_delay_seconds=decision.delay_seconds,
            error=error,
        )

    def _finish(
        self,
        doc_id: str,
        status: DocumentStatus,
        *,
        chunks_indexed: int = 0,
        error: BaseException | None = None,
    ) -> ProcessingOutcome:
        try:
            record = self._repository.transition(doc_id, status)
            final = record.status
        except (InvalidTransition, NotFoundError) as exc:
            logger.warning("Could not set document %s to %s: %s", doc_id, status.value, exc)
            final = self._repository.status_of(doc_id)
        if final is DocumentStatus.COMPLETED:
            logger.info("Successfully completed processing for document %s", doc_id)
        return ProcessingOutcome(doc_id=doc_id, status=final, chunks_indexed=chunks_indexed, error=error)
