"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Chunking
    chunk_max_size: int = Field(default=1000, description="Maximum characters per chunk")
    chunk_overlap: int = Field(default=200, description="Characters of look-back context between chunks")

    # Processing
    upsert_batch_size: int = Field(default=10, description="Chunks embedded and upserted per batch")
    upsert_attempts: int = Field(default=3, description="Internal attempts per vector-index upsert call")
    upsert_backoff_seconds: float = 1.0
    max_retries: int = Field(default=3, description="Re-enqueue budget before a document is marked failed")
    retry_base_delay_seconds: int = Field(default=60, description="Base delay for exponential re-enqueue backoff")
    collaborator_timeout_seconds: float = Field(
        default=30.0,
        description="Upper bound for any single call to the object store, extractor, embedder or index",
    )

    # Workers / queue
    worker_pool_size: int = 4
    queue_visibility_timeout_seconds: float = 300.0
    queue_receive_wait_seconds: float = 1.0

    # Idempotency
    idempotency_ttl_seconds: int = 3600
    idempotency_max_entries: int = 10_000
    idempotency_sweep_interval_seconds: float = 300.0

    # Files
    max_file_bytes: int = 10 * 1024 * 1024
    object_store_root: str = ".knowledge_objects"

    # Embedding
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"

    # Answer generation
    openai_api_key: str = Field(
        default="",
        description="OpenAI API key (or dummy value for a local OpenAI-compatible server)",
    )
    llm_model_name: str = Field(default="gpt-4o-mini", description="Chat model used to answer questions")
    llm_base_url: str = Field(
        default="",
        description="Base URL of an OpenAI-compatible endpoint; empty means the OpenAI cloud API",
    )
    llm_temperature: float = 0.7
    llm_max_tokens: int = 500

    # Vector store
    chroma_host: str = "localhost"
    chroma_port: int = 8000
    chroma_collection: str = "knowledge"

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton; import `settings` wherever needed.
settings = Settings()
