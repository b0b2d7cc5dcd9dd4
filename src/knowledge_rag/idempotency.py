"""Dedup / idempotency register for import requests.

:meth:`IdempotencyRegister.execute_once` runs an operation at most once per
key within the key's TTL.  Reservation is compute-if-absent: the first
caller installs a future for the key under a short lock and runs the
operation outside it; concurrent callers with the same key wait on that
future and reuse its result.  Unrelated keys never wait on each other's
operations.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from cachetools import TLRUCache

from knowledge_rag.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class IdempotencyRecord:
    key: str
    result: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def _record_ttu(_key: str, record: IdempotencyRecord, _now: float) -> float:
    return record.expires_at


def make_idempotency_key(client_token: str | None, owner_id: str, request: Any) -> str:
    """Hash of the client token, owner and canonical request body.

    *request* is serialised as JSON with sorted keys, so dicts with the
    same content in a different order produce the same key.
    """
    if hasattr(request, "model_dump"):
        request = request.model_dump(mode="json")
    canonical = json.dumps(request, sort_keys=True, separators=(",", ":"), default=str)
    request_hash = hashlib.sha256(canonical.encode()).hexdigest()
    raw = f"{client_token or 'anonymous'}:{owner_id}:{request_hash}"
    return hashlib.sha256(raw.encode()).hexdigest()


class IdempotencyRegister:
    """Process-wide register of completed operations.

    Parameters
    ----------
    ttl_seconds:
        Default validity of a stored result.
    max_entries:
        Capacity; least-recently-used results are evicted beyond it.
    sweep_interval:
        Period of the background sweep started by :meth:`start`.
    clock:
        Time source (injectable for tests).
    """

    def __init__(
        self,
        ttl_seconds: float = settings.idempotency_ttl_seconds,
        *,
        max_entries: int = settings.idempotency_max_entries,
        sweep_interval: float = settings.idempotency_sweep_interval_seconds,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._records: TLRUCache = TLRUCache(maxsize=max_entries, ttu=_record_ttu, timer=clock)
        self._inflight: dict[str, Future] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    # -- public API -----------------------------------------------------------

    def execute_once(self, key: str, operation: Callable[[], T], ttl_seconds: float | None = None) -> T:
        """Return the stored result for *key*, or run *operation* and store it."""
        with self._lock:
            record = self._records.get(key)
            if record is not None:
                logger.info("Duplicate request detected, returning stored result for key %s", key[:12])
                return record.result
            future = self._inflight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[key] = future

        if not owner:
            logger.info("Concurrent request for key %s; waiting for the first caller", key[:12])
            return future.result()

        try:
            result = operation()
        except BaseException as exc:
            with self._lock:
                self._inflight.pop(key, None)
            future.set_exception(exc)
            raise

        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._records[key] = IdempotencyRecord(key=key, result=result, expires_at=self._clock() + ttl)
            self._inflight.pop(key, None)
        future.set_result(result)
        logger.debug("Stored idempotency record for key %s (ttl=%ss)", key[:12], ttl)
        return result

    def lookup(self, key: str) -> IdempotencyRecord | None:
        """Return the live record for *key*; expired records are evicted."""
        with self._lock:
            return self._records.get(key)

    def sweep(self) -> int:
        """Evict expired records now; return how many were removed."""
        with self._lock:
            before = len(self._records)
            self._records.expire()
            removed = before - len(self._records)
        if removed:
            logger.info("Cleaned up %d expired idempotency records", removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
        logger.info("Cleared all idempotency records")

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # -- lifecycle ------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic sweep thread."""
        if self._sweeper is not None:
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="idempotency-sweeper", daemon=True)
        self._sweeper.start()

    def close(self) -> None:
        """Stop the sweep thread and drop all records."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join()
            self._sweeper = None
        self.clear()

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval):
            self.sweep()
