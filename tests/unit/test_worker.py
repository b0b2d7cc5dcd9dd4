"""Unit tests for the worker pool and delivery handling."""

from __future__ import annotations

from pathlib import Path

import pytest
from conftest import HashingEmbedder, make_text

from knowledge_rag.ingestion.extractor import TextExtractor
from knowledge_rag.messaging.queue import InMemoryQueue
from knowledge_rag.models import DocumentRecord, ProcessingMessage, VectorRecord
from knowledge_rag.processing.processor import DocumentProcessor
from knowledge_rag.processing.states import DocumentStatus
from knowledge_rag.processing.worker import WorkerPool, handle_delivery
from knowledge_rag.retrieval.memory_store import InMemoryVectorIndex
from knowledge_rag.storage.object_store import LocalObjectStore, object_key_for
from knowledge_rag.storage.repository import InMemoryDocumentRepository

OWNER = "user-7"


class FailOnceIndex(InMemoryVectorIndex):
    """First upsert of every document fails."""

    def __init__(self) -> None:
        super().__init__()
        self.failed_docs: set[str] = set()

    def upsert(self, namespace: str, records: list[VectorRecord]) -> int:
        doc_id = records[0].metadata.doc_id
        if doc_id not in self.failed_docs:
            self.failed_docs.add(doc_id)
            raise ConnectionError("transient")
        return super().upsert(namespace, records)


@pytest.fixture()
def real_queue() -> InMemoryQueue:
    return InMemoryQueue(visibility_timeout=30)


def _build(tmp_path: Path, queue: InMemoryQueue, index: InMemoryVectorIndex):
    repository = InMemoryDocumentRepository()
    store = LocalObjectStore(tmp_path / "objects")
    processor = DocumentProcessor(
        repository=repository,
        object_store=store,
        extractor=TextExtractor(),
        embedder=HashingEmbedder(),
        index=index,
        queue=queue,
        base_delay=0,
        upsert_attempts=1,
        timeout=5.0,
    )
    return repository, store, processor


def _submit(repository, store, queue, doc_id: str, text: str) -> None:
    key = object_key_for(OWNER, doc_id, f"{doc_id}.txt")
    store.upload(key, text.encode())
    repository.create(
        DocumentRecord(
            id=doc_id,
            owner_id=OWNER,
            name=doc_id,
            source_filename=f"{doc_id}.txt",
            size_bytes=len(text),
            status=DocumentStatus.PENDING,
        )
    )
    message = ProcessingMessage(
        doc_id=doc_id, owner_id=OWNER, object_key=key, original_filename=f"{doc_id}.txt", file_size=len(text)
    )
    queue.send(message.to_json())


def test_pool_processes_documents_in_parallel(tmp_path: Path, real_queue: InMemoryQueue) -> None:
    index = InMemoryVectorIndex()
    repository, store, processor = _build(tmp_path, real_queue, index)
    doc_ids = [f"kb_doc{i:04d}" for i in range(5)]
    for i, doc_id in enumerate(doc_ids):
        _submit(repository, store, real_queue, doc_id, make_text(40 + i * 10))

    with WorkerPool(processor, real_queue, size=3, receive_wait=0.05) as pool:
        assert pool.drain(timeout=30)

    assert {repository.status_of(d) for d in doc_ids} == {DocumentStatus.COMPLETED}
    stored_docs = {r.metadata.doc_id for r in index.records(OWNER).values()}
    assert stored_docs == set(doc_ids)
    assert len(pool.outcomes) == 5


def test_pool_completes_documents_after_retry(tmp_path: Path, real_queue: InMemoryQueue) -> None:
    index = FailOnceIndex()
    repository, store, processor = _build(tmp_path, real_queue, index)
    _submit(repository, store, real_queue, "kb_retry001", make_text(30))

    with WorkerPool(processor, real_queue, size=2, receive_wait=0.05) as pool:
        assert pool.drain(timeout=30)

    assert repository.status_of("kb_retry001") is DocumentStatus.COMPLETED
    assert sorted(o.status.value for o in pool.outcomes) == ["completed", "retrying"]


def test_malformed_message_is_dropped(tmp_path: Path, real_queue: InMemoryQueue) -> None:
    _, _, processor = _build(tmp_path, real_queue, InMemoryVectorIndex())
    real_queue.send("not json at all")
    delivery = real_queue.receive()

    assert handle_delivery(processor, real_queue, delivery) is None
    assert real_queue.pending_count() == 0


def test_pool_size_must_be_positive(tmp_path: Path, real_queue: InMemoryQueue) -> None:
    _, _, processor = _build(tmp_path, real_queue, InMemoryVectorIndex())
    with pytest.raises(ValueError, match="size"):
        WorkerPool(processor, real_queue, size=0)


def test_outcome_history_is_bounded_but_callback_sees_all(tmp_path: Path, real_queue: InMemoryQueue) -> None:
    index = InMemoryVectorIndex()
    repository, store, processor = _build(tmp_path, real_queue, index)
    doc_ids = [f"kb_hist{i:04d}" for i in range(5)]
    for doc_id in doc_ids:
        _submit(repository, store, real_queue, doc_id, make_text(20))
    seen: list[str] = []

    pool = WorkerPool(
        processor, real_queue, size=2, receive_wait=0.05, history=2, on_outcome=lambda o: seen.append(o.doc_id)
    )
    with pool:
        assert pool.drain(timeout=30)

    assert len(pool.outcomes) == 2
    assert sorted(seen) == doc_ids
    assert {o.doc_id for o in pool.outcomes} <= set(doc_ids)


def test_failing_callback_does_not_stop_workers(tmp_path: Path, real_queue: InMemoryQueue) -> None:
    repository, store, processor = _build(tmp_path, real_queue, InMemoryVectorIndex())
    for doc_id in ("kb_cb000001", "kb_cb000002"):
        _submit(repository, store, real_queue, doc_id, make_text(20))

    def explode(outcome) -> None:
        raise RuntimeError("observer broke")

    with WorkerPool(processor, real_queue, size=1, receive_wait=0.05, on_outcome=explode) as pool:
        assert pool.drain(timeout=30)

    assert repository.status_of("kb_cb000001") is DocumentStatus.COMPLETED
    assert repository.status_of("kb_cb000002") is DocumentStatus.COMPLETED
    assert len(pool.outcomes) == 2
