"""Document status records and atomic status transitions."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod

from knowledge_rag.errors import ConcurrencyConflict, InvalidTransition, NotFoundError
from knowledge_rag.models import DocumentRecord, utcnow
from knowledge_rag.processing.states import DocumentStatus, can_transition, is_noop

logger = logging.getLogger(__name__)


class DocumentRepositoryBase(ABC):
    """Persistence contract for :class:`DocumentRecord`."""

    @abstractmethod
    def create(self, record: DocumentRecord) -> DocumentRecord:
        """Insert a new record; raise ``ConcurrencyConflict`` if the id exists."""
        ...

    @abstractmethod
    def get(self, doc_id: str) -> DocumentRecord | None:
        ...

    @abstractmethod
    def transition(self, doc_id: str, target: DocumentStatus) -> DocumentRecord:
        """Atomically move *doc_id* to *target*.

        Raises
        ------
        NotFoundError
            Unknown document.
        InvalidTransition
            The transition table forbids the move from the current status.
        """
        ...

    @abstractmethod
    def delete(self, doc_id: str) -> None:
        ...

    def status_of(self, doc_id: str) -> DocumentStatus:
        record = self.get(doc_id)
        return record.status if record is not None else DocumentStatus.NOT_FOUND


class InMemoryDocumentRepository(DocumentRepositoryBase):
    """Thread-safe in-process repository.

    Transitions are compare-and-set under a per-document lock, so two
    workers racing on the same document serialise only with each other.
    """

    def __init__(self) -> None:
        self._records: dict[str, DocumentRecord] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, doc_id: str) -> threading.Lock:
        with self._registry_lock:
            return self._locks.setdefault(doc_id, threading.Lock())

    def create(self, record: DocumentRecord) -> DocumentRecord:
        with self._lock_for(record.id):
            if record.id in self._records:
                raise ConcurrencyConflict(f"Document {record.id} already exists", code="DUPLICATE_DOCUMENT")
            self._records[record.id] = record.model_copy(deep=True)
        logger.debug("Created document %s for owner %s", record.id, record.owner_id)
        return record

    def get(self, doc_id: str) -> DocumentRecord | None:
        record = self._records.get(doc_id)
        return record.model_copy(deep=True) if record is not None else None

    def transition(self, doc_id: str, target: DocumentStatus) -> DocumentRecord:
        with self._lock_for(doc_id):
            record = self._records.get(doc_id)
            if record is None:
                raise NotFoundError(f"Document not found: {doc_id}", code="DOCUMENT_NOT_FOUND")
            current = record.status
            if is_noop(current, target):
                return record.model_copy(deep=True)
            if not can_transition(current, target):
                raise InvalidTransition(doc_id, current.value, target.value)
            updated = record.model_copy(update={"status": target, "updated_at": utcnow()})
            self._records[doc_id] = updated
        logger.debug("Document %s: %s -> %s", doc_id, current.value, target.value)
        return updated.model_copy(deep=True)

    def delete(self, doc_id: str) -> None:
        with self._lock_for(doc_id):
            self._records.pop(doc_id, None)
        with self._registry_lock:
            self._locks.pop(doc_id, None)
