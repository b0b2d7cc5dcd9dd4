"""Unit tests for bounded-time collaborator calls."""

from __future__ import annotations

import threading

import pytest

from knowledge_rag.errors import TransientIOError
from knowledge_rag.timeouts import call_with_timeout


def test_none_timeout_runs_inline() -> None:
    caller = threading.get_ident()
    assert call_with_timeout(threading.get_ident, None) == caller


def test_result_returned_within_timeout() -> None:
    assert call_with_timeout(sum, 5.0, [1, 2, 3]) == 6


def test_overrun_becomes_transient_timeout() -> None:
    release = threading.Event()
    try:
        with pytest.raises(TransientIOError, match="slow call timed out") as exc_info:
            call_with_timeout(release.wait, 0.1, 10, description="slow call")
    finally:
        release.set()
    assert exc_info.value.code == "TIMEOUT"


def test_exceptions_propagate_unchanged() -> None:
    def boom() -> None:
        raise ConnectionError("refused")

    with pytest.raises(ConnectionError, match="refused"):
        call_with_timeout(boom, 1.0)
