"""Bounded-time calls to collaborators.

Every blocking call to the object store, extractor, embedder or vector index
goes through :func:`call_with_timeout`.  A call that overruns is abandoned
(its thread keeps running until the collaborator returns) and surfaces as
:class:`~knowledge_rag.errors.TransientIOError`.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, TypeVar

from knowledge_rag.errors import TransientIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_executor = ThreadPoolExecutor(max_workers=32, thread_name_prefix="collaborator")


def call_with_timeout(func: Callable[..., T], timeout: float | None, *args, description: str = "", **kwargs) -> T:
    """Run ``func(*args, **kwargs)`` and wait at most *timeout* seconds.

    ``timeout=None`` calls *func* inline.  Exceptions raised by *func*
    propagate unchanged.
    """
    if timeout is None:
        return func(*args, **kwargs)

    future = _executor.submit(func, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout as exc:
        future.cancel()
        label = description or getattr(func, "__qualname__", repr(func))
        logger.warning("Call to %s timed out after %.1fs", label, timeout)
        raise TransientIOError(f"{label} timed out after {timeout}s", code="TIMEOUT") from exc
