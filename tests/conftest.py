"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import hashlib
import math
import re
from pathlib import Path

import pytest

from knowledge_rag.ingestion.embedder import EmbeddingClientBase
from knowledge_rag.ingestion.extractor import TextExtractor
from knowledge_rag.messaging.queue import InMemoryQueue
from knowledge_rag.processing.processor import DocumentProcessor
from knowledge_rag.retrieval.memory_store import InMemoryVectorIndex
from knowledge_rag.storage.object_store import LocalObjectStore
from knowledge_rag.storage.repository import InMemoryDocumentRepository


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ───────────────────────────────────────────────────────────────


class HashingEmbedder(EmbeddingClientBase):
    """Deterministic bag-of-words embedder: identical texts get identical vectors."""

    def __init__(self, dim: int = 128) -> None:
        self.dim = dim
        self.calls = 0

    def _embed(self, text: str) -> list[float]:
        vec = [0.0] * self.dim
        for token in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dim
            vec[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vec))
        if norm == 0:
            vec[0] = 1.0
            return vec
        return [v / norm for v in vec]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return [self._embed(t) for t in texts]


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def embedder() -> HashingEmbedder:
    return HashingEmbedder()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def repository() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture()
def object_store(tmp_path: Path) -> LocalObjectStore:
    return LocalObjectStore(tmp_path / "objects")


@pytest.fixture()
def index() -> InMemoryVectorIndex:
    return InMemoryVectorIndex()


@pytest.fixture()
def queue(clock: FakeClock) -> InMemoryQueue:
    return InMemoryQueue(visibility_timeout=30.0, clock=clock)


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def processor(
    repository: InMemoryDocumentRepository,
    object_store: LocalObjectStore,
    embedder: HashingEmbedder,
    index: InMemoryVectorIndex,
    queue: InMemoryQueue,
    sleeps: list[float],
) -> DocumentProcessor:
    return DocumentProcessor(
        repository=repository,
        object_store=object_store,
        extractor=TextExtractor(max_file_bytes=1024 * 1024),
        embedder=embedder,
        index=index,
        queue=queue,
        chunk_max_size=1000,
        chunk_overlap=200,
        batch_size=4,
        max_retries=3,
        base_delay=60,
        upsert_attempts=2,
        upsert_backoff=1.0,
        timeout=None,
        sleep=sleeps.append,
    )


def make_text(sentences: int = 120) -> str:
    """Prose-like text with sentence boundaries and distinct vocabulary."""
    topics = ["refund", "shipping", "warranty", "billing", "privacy", "returns", "support", "accounts"]
    return " ".join(
        f"Sentence {i} explains the {topics[i % len(topics)]} policy section {i // 10} in detail."
        for i in range(sentences)
    )
