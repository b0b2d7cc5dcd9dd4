"""Command-line entry point: ingest files and query them in one process.

Usage::

    knowledge-rag ingest --owner user-1 docs/handbook.pdf docs/faq.md
    knowledge-rag query --owner user-1 --doc kb_1a2b3c4d "What is the refund policy?" --top-k 3
"""

from __future__ import annotations

import argparse
import logging
import sys

from knowledge_rag.config import settings
from knowledge_rag.errors import KnowledgeError
from knowledge_rag.idempotency import IdempotencyRegister
from knowledge_rag.ingestion.embedder import HuggingFaceEmbeddingClient
from knowledge_rag.ingestion.extractor import TextExtractor
from knowledge_rag.messaging.queue import InMemoryQueue
from knowledge_rag.processing.processor import DocumentProcessor
from knowledge_rag.processing.worker import WorkerPool
from knowledge_rag.retrieval.chroma_store import ChromaVectorIndex
from knowledge_rag.retrieval.retriever import RetrievalEngine
from knowledge_rag.service import KnowledgeService
from knowledge_rag.storage.object_store import LocalObjectStore
from knowledge_rag.storage.repository import InMemoryDocumentRepository

logger = logging.getLogger(__name__)


def _build(
    args: argparse.Namespace,
) -> tuple[KnowledgeService, DocumentProcessor, InMemoryQueue, ChromaVectorIndex, IdempotencyRegister]:
    embedder = HuggingFaceEmbeddingClient(args.embedding_model)
    index = ChromaVectorIndex(host=args.chroma_host, port=args.chroma_port)
    repository = InMemoryDocumentRepository()
    object_store = LocalObjectStore(args.object_root)
    queue = InMemoryQueue()
    register = IdempotencyRegister()
    processor = DocumentProcessor(
        repository=repository,
        object_store=object_store,
        extractor=TextExtractor(settings.max_file_bytes),
        embedder=embedder,
        index=index,
        queue=queue,
    )
    service = KnowledgeService(
        repository=repository,
        object_store=object_store,
        queue=queue,
        index=index,
        retriever=RetrievalEngine(index, embedder),
        register=register,
    )
    return service, processor, queue, index, register


def _cmd_ingest(args: argparse.Namespace) -> int:
    service, processor, queue, index, register = _build(args)
    if not index.health_check():
        logger.error("Vector index at %s:%s is not reachable; nothing imported", args.chroma_host, args.chroma_port)
        return 1

    register.start()
    try:
        receipts = []
        for path in args.files:
            try:
                receipt = service.import_document(args.owner, path, args.name or path, client_token=args.client_token)
                receipts.append(receipt)
            except KnowledgeError as exc:
                logger.error("Import of %s rejected: %s", path, exc)

        with WorkerPool(processor, queue, size=args.workers) as pool:
            drained = pool.drain(timeout=args.timeout)
    finally:
        register.close()

    for receipt in receipts:
        print(f"{receipt.doc_id}\t{service.get_status(receipt.doc_id).value}")
    if not drained:
        logger.warning("Timed out waiting for processing; %d messages pending", queue.pending_count())
        return 1
    return 0 if len(receipts) == len(args.files) else 1


def _cmd_query(args: argparse.Namespace) -> int:
    embedder = HuggingFaceEmbeddingClient(args.embedding_model)
    engine = RetrievalEngine(ChromaVectorIndex(host=args.chroma_host, port=args.chroma_port), embedder)
    try:
        chunks = engine.retrieve_by_text(
            args.owner, args.doc, args.query, top_k=args.top_k, score_threshold=args.threshold
        )
    except KnowledgeError as exc:
        logger.error("Query failed: %s", exc)
        return 1
    if not chunks:
        print("No relevant chunks found.")
    for chunk in chunks:
        print(f"[{chunk.score:.3f}] #{chunk.chunk_index} {chunk.text[:200]}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="knowledge-rag", description="Document ingestion and retrieval")
    parser.add_argument("--chroma-host", default=settings.chroma_host)
    parser.add_argument("--chroma-port", type=int, default=settings.chroma_port)
    parser.add_argument("--embedding-model", default=settings.embedding_model)
    parser.add_argument("--log-level", default=settings.log_level)
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Import files and process them")
    ingest.add_argument("files", nargs="+")
    ingest.add_argument("--owner", required=True)
    ingest.add_argument("--name", default=None, help="Display name (defaults to the path)")
    ingest.add_argument("--client-token", default=None, help="Import a repeated path only once")
    ingest.add_argument("--object-root", default=settings.object_store_root)
    ingest.add_argument("--workers", type=int, default=settings.worker_pool_size)
    ingest.add_argument("--timeout", type=float, default=600.0, help="Seconds to wait for processing")
    ingest.set_defaults(func=_cmd_ingest)

    query = sub.add_parser("query", help="Retrieve the best chunks of a document")
    query.add_argument("query")
    query.add_argument("--owner", required=True)
    query.add_argument("--doc", required=True)
    query.add_argument("--top-k", type=int, default=5)
    query.add_argument("--threshold", type=float, default=0.0)
    query.set_defaults(func=_cmd_query)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
