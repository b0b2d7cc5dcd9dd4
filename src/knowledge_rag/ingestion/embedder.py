"""Embedding clients — text to fixed-length vectors."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from knowledge_rag.config import settings

logger = logging.getLogger(__name__)


class EmbeddingClientBase(ABC):
    """Backend-agnostic embedding interface."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""
        ...

    def embed_query(self, text: str) -> list[float]:
        """Embed a single query string."""
        return self.embed_documents([text])[0]


class HuggingFaceEmbeddingClient(EmbeddingClientBase):
    """Sentence-transformer embeddings via ``langchain_huggingface``.

    Vectors are L2-normalised so that cosine similarity and inner product
    agree.
    """

    def __init__(self, model_name: str = settings.embedding_model, *, normalize: bool = True) -> None:
        from langchain_huggingface import HuggingFaceEmbeddings

        self.model_name = model_name
        self._embedder = HuggingFaceEmbeddings(
            model_name=model_name,
            encode_kwargs={"normalize_embeddings": normalize},
        )
        logger.info("Loaded embedding model %s", model_name)

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self._embedder.embed_documents(texts)

    def embed_query(self, text: str) -> list[float]:
        return self._embedder.embed_query(text)
