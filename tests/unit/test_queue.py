"""Unit tests for the in-memory processing queue."""

from __future__ import annotations

import pytest
from conftest import FakeClock

from knowledge_rag.errors import NotFoundError
from knowledge_rag.messaging.queue import InMemoryQueue


def test_send_then_receive(queue: InMemoryQueue) -> None:
    message_id = queue.send('{"a": 1}')
    delivery = queue.receive()
    assert delivery is not None
    assert delivery.message_id == message_id
    assert delivery.body == '{"a": 1}'
    assert delivery.receive_count == 1


def test_empty_queue_returns_none(queue: InMemoryQueue) -> None:
    assert queue.receive() is None


def test_fifo_for_equal_visibility(queue: InMemoryQueue) -> None:
    for body in ("one", "two", "three"):
        queue.send(body)
    assert [queue.receive().body for _ in range(3)] == ["one", "two", "three"]


def test_delayed_message_hidden_until_due(queue: InMemoryQueue, clock: FakeClock) -> None:
    queue.send("later", delay_seconds=60)
    assert queue.receive() is None
    clock.advance(59)
    assert queue.receive() is None
    clock.advance(1)
    assert queue.receive().body == "later"


def test_unacked_message_redelivered_after_visibility_timeout(queue: InMemoryQueue, clock: FakeClock) -> None:
    queue.send("work")
    first = queue.receive()
    assert queue.receive() is None

    clock.advance(30)
    second = queue.receive()
    assert second is not None
    assert second.message_id == first.message_id
    assert second.receive_count == 2
    assert second.receipt_handle != first.receipt_handle


def test_ack_removes_message(queue: InMemoryQueue, clock: FakeClock) -> None:
    queue.send("work")
    delivery = queue.receive()
    queue.ack(delivery.receipt_handle)
    assert queue.pending_count() == 0
    clock.advance(60)
    assert queue.receive() is None


def test_ack_with_expired_receipt_is_rejected(queue: InMemoryQueue, clock: FakeClock) -> None:
    queue.send("work")
    first = queue.receive()
    clock.advance(30)
    queue.receive()
    with pytest.raises(NotFoundError, match="STALE_RECEIPT"):
        queue.ack(first.receipt_handle)


def test_pending_count_includes_delayed_and_in_flight(queue: InMemoryQueue) -> None:
    queue.send("now")
    queue.send("later", delay_seconds=10)
    queue.receive()
    assert queue.pending_count() == 2
    assert queue.in_flight_count() == 1


def test_receive_waits_for_a_send() -> None:
    import threading

    real = InMemoryQueue(visibility_timeout=30)
    timer = threading.Timer(0.05, real.send, args=("late",))
    timer.start()
    try:
        delivery = real.receive(wait_seconds=2.0)
    finally:
        timer.join()
    assert delivery is not None
    assert delivery.body == "late"
