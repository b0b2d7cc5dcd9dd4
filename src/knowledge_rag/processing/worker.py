"""Worker pool — parallel consumers of the processing queue.

Each worker thread loops ``receive → process → ack``.  A message is only
acknowledged after the processor has made its decision; if handling
crashes unexpectedly the message is left unacknowledged and the queue's
visibility timeout redelivers it.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from knowledge_rag.config import settings
from knowledge_rag.errors import KnowledgeError
from knowledge_rag.messaging.queue import Delivery, QueueBase
from knowledge_rag.models import ProcessingMessage
from knowledge_rag.processing.processor import DocumentProcessor, ProcessingOutcome

logger = logging.getLogger(__name__)


def handle_delivery(processor: DocumentProcessor, queue: QueueBase, delivery: Delivery) -> ProcessingOutcome | None:
    """Process one delivery and acknowledge it.

    Malformed bodies are acknowledged and dropped.  Returns ``None`` in that
    case.
    """
    try:
        message = ProcessingMessage.from_json(delivery.body)
    except ValueError as exc:
        logger.error("Dropping malformed message %s: %s", delivery.message_id, exc)
        _ack(queue, delivery)
        return None

    outcome = processor.process(message)
    _ack(queue, delivery)
    return outcome


def _ack(queue: QueueBase, delivery: Delivery) -> None:
    try:
        queue.ack(delivery.receipt_handle)
    except KnowledgeError as exc:
        # The visibility timeout expired mid-processing; another copy is in flight.
        logger.warning("Could not acknowledge message %s: %s", delivery.message_id, exc)


class WorkerPool:
    """Fixed-size pool of queue consumers.

    Parameters
    ----------
    processor:
        Shared, thread-safe document processor.
    queue:
        Queue to consume from.
    size:
        Number of concurrent workers.
    receive_wait:
        Long-poll duration for each ``receive`` call.
    history:
        How many recent outcomes to keep in :attr:`outcomes`.
    on_outcome:
        Called from the worker thread with every outcome, including those
        that have fallen out of :attr:`outcomes`.
    """

    def __init__(
        self,
        processor: DocumentProcessor,
        queue: QueueBase,
        *,
        size: int = settings.worker_pool_size,
        receive_wait: float = settings.queue_receive_wait_seconds,
        history: int = 1000,
        on_outcome: Callable[[ProcessingOutcome], None] | None = None,
    ) -> None:
        if size < 1:
            raise ValueError(f"Worker pool size must be >= 1, got {size}")
        self._processor = processor
        self._queue = queue
        self.size = size
        self.receive_wait = receive_wait
        self._stop = threading.Event()
        self._executor: ThreadPoolExecutor | None = None
        self._futures: list[Future] = []
        self._busy = 0
        self._busy_lock = threading.Lock()
        self._on_outcome = on_outcome
        self.outcomes: deque[ProcessingOutcome] = deque(maxlen=history)

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> None:
        if self._executor is not None:
            raise RuntimeError("WorkerPool already started")
        self._stop.clear()
        self._executor = ThreadPoolExecutor(max_workers=self.size, thread_name_prefix="ingest-worker")
        self._futures = [self._executor.submit(self._run, i) for i in range(self.size)]
        logger.info("Started %d ingestion workers", self.size)

    def stop(self, timeout: float | None = None) -> None:
        """Signal workers to exit after their current message and wait for them."""
        self._stop.set()
        if self._executor is None:
            return
        for future in self._futures:
            future.result(timeout=timeout)
        self._executor.shutdown(wait=True)
        self._executor = None
        self._futures = []
        logger.info("Stopped ingestion workers")

    def __enter__(self) -> WorkerPool:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def drain(self, timeout: float = 60.0, poll_interval: float = 0.05) -> bool:
        """Wait until the queue is empty and no worker is busy.

        Delayed retry messages count as pending.  Returns ``False`` on timeout.
        """
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            with self._busy_lock:
                busy = self._busy
            if busy == 0 and self._queue.pending_count() == 0:
                return True
            time.sleep(poll_interval)
        return False

    # -- worker loop ----------------------------------------------------------

    def _run(self, worker_id: int) -> None:
        logger.debug("Worker %d started", worker_id)
        while not self._stop.is_set():
            delivery = self._queue.receive(wait_seconds=self.receive_wait)
            if delivery is None:
                continue
            with self._busy_lock:
                self._busy += 1
            try:
                outcome = handle_delivery(self._processor, self._queue, delivery)
                if outcome is not None:
                    self._record(outcome)
            except Exception:
                logger.exception("Worker %d crashed on message %s; leaving it for redelivery", worker_id, delivery.message_id)
            finally:
                with self._busy_lock:
                    self._busy -= 1
        logger.debug("Worker %d exiting", worker_id)

    def _record(self, outcome: ProcessingOutcome) -> None:
        with self._busy_lock:
            self.outcomes.append(outcome)
        if self._on_outcome is None:
            return
        try:
            self._on_outcome(outcome)
        except Exception:
            logger.exception("Outcome callback failed for document %s", outcome.doc_id)
