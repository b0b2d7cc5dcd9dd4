"""Processing queue — at-least-once delivery with visibility timeout.

Semantics follow SQS: a received message stays invisible to other
consumers until it is acknowledged or its visibility timeout expires, in
which case it becomes deliverable again.  ``send(..., delay_seconds=n)``
hides a new message for *n* seconds.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable

from knowledge_rag.config import settings
from knowledge_rag.errors import NotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delivery:
    """One received copy of a queued message."""

    message_id: str
    body: str
    receipt_handle: str
    receive_count: int


class QueueBase(ABC):
    """Consumer/producer contract used by the import handler and workers."""

    @abstractmethod
    def send(self, body: str, *, delay_seconds: float = 0, attributes: dict[str, str] | None = None) -> str:
        """Enqueue *body*; return the message id."""
        ...

    @abstractmethod
    def receive(self, wait_seconds: float = 0) -> Delivery | None:
        """Return the next visible message, waiting up to *wait_seconds*."""
        ...

    @abstractmethod
    def ack(self, receipt_handle: str) -> None:
        """Delete the message identified by *receipt_handle*."""
        ...

    @abstractmethod
    def pending_count(self) -> int:
        """Number of messages not yet acknowledged (visible, delayed or in flight)."""
        ...


@dataclass
class _Entry:
    message_id: str
    body: str
    attributes: dict[str, str] = field(default_factory=dict)
    receive_count: int = 0
    receipt_handle: str | None = None


class InMemoryQueue(QueueBase):
    """Thread-safe in-process queue.

    Parameters
    ----------
    visibility_timeout:
        Seconds a received message stays hidden before redelivery.
    clock:
        Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        visibility_timeout: float = settings.queue_visibility_timeout_seconds,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._cond = threading.Condition()
        self._seq = itertools.count()
        # (visible_at, seq, message_id)
        self._ready: list[tuple[float, int, str]] = []
        self._entries: dict[str, _Entry] = {}
        # receipt_handle -> (message_id, invisible_until)
        self._in_flight: dict[str, tuple[str, float]] = {}

    def send(self, body: str, *, delay_seconds: float = 0, attributes: dict[str, str] | None = None) -> str:
        message_id = uuid.uuid4().hex
        with self._cond:
            self._entries[message_id] = _Entry(message_id=message_id, body=body, attributes=dict(attributes or {}))
            heapq.heappush(self._ready, (self._clock() + max(0.0, delay_seconds), next(self._seq), message_id))
            self._cond.notify()
        logger.debug("Enqueued message %s (delay=%ss)", message_id, delay_seconds)
        return message_id

    def _requeue_expired(self, now: float) -> None:
        expired = [h for h, (_, until) in self._in_flight.items() if until <= now]
        for handle in expired:
            message_id, _ = self._in_flight.pop(handle)
            entry = self._entries.get(message_id)
            if entry is None:
                continue
            entry.receipt_handle = None
            heapq.heappush(self._ready, (now, next(self._seq), message_id))
            logger.info("Visibility timeout expired for message %s; redelivering", message_id)

    def _next_wakeup(self, now: float) -> float | None:
        times = [until for _, until in self._in_flight.values()]
        if self._ready:
            times.append(self._ready[0][0])
        return min(times) - now if times else None

    def receive(self, wait_seconds: float = 0) -> Delivery | None:
        deadline = self._clock() + max(0.0, wait_seconds)
        with self._cond:
            while True:
                now = self._clock()
                self._requeue_expired(now)
                if self._ready and self._ready[0][0] <= now:
                    _, _, message_id = heapq.heappop(self._ready)
                    entry = self._entries.get(message_id)
                    if entry is None:
                        continue
                    entry.receive_count += 1
                    entry.receipt_handle = uuid.uuid4().hex
                    self._in_flight[entry.receipt_handle] = (message_id, now + self.visibility_timeout)
                    return Delivery(
                        message_id=message_id,
                        body=entry.body,
                        receipt_handle=entry.receipt_handle,
                        receive_count=entry.receive_count,
                    )
                remaining = deadline - now
                if remaining <= 0:
                    return None
                wakeup = self._next_wakeup(now)
                self._cond.wait(min(remaining, wakeup) if wakeup is not None else remaining)

    def ack(self, receipt_handle: str) -> None:
        with self._cond:
            in_flight = self._in_flight.pop(receipt_handle, None)
            if in_flight is None:
                raise NotFoundError("Unknown or expired receipt handle", code="STALE_RECEIPT")
            message_id, _ = in_flight
            self._entries.pop(message_id, None)
            self._cond.notify_all()
        logger.debug("Acknowledged message %s", message_id)

    def pending_count(self) -> int:
        with self._cond:
            return len(self._entries)

    def in_flight_count(self) -> int:
        with self._cond:
            return len(self._in_flight)
