"""Unit tests for the idempotency register."""

from __future__ import annotations

import threading

import pytest
from conftest import FakeClock

from knowledge_rag.idempotency import IdempotencyRegister, make_idempotency_key


@pytest.fixture()
def register(clock: FakeClock) -> IdempotencyRegister:
    return IdempotencyRegister(ttl_seconds=60, max_entries=100, sweep_interval=0.01, clock=clock)


class TestKeys:
    def test_key_ignores_dict_ordering(self) -> None:
        a = make_idempotency_key("tok", "owner", {"name": "x", "file": "a.txt"})
        b = make_idempotency_key("tok", "owner", {"file": "a.txt", "name": "x"})
        assert a == b

    def test_key_depends_on_token_owner_and_body(self) -> None:
        base = make_idempotency_key("tok", "owner", {"file": "a.txt"})
        assert base != make_idempotency_key("other", "owner", {"file": "a.txt"})
        assert base != make_idempotency_key("tok", "someone", {"file": "a.txt"})
        assert base != make_idempotency_key("tok", "owner", {"file": "b.txt"})

    def test_missing_token_is_anonymous(self) -> None:
        assert make_idempotency_key(None, "o", {}) == make_idempotency_key("anonymous", "o", {})


class TestExecuteOnce:
    def test_second_call_returns_stored_result(self, register: IdempotencyRegister) -> None:
        calls: list[int] = []

        def op() -> str:
            calls.append(1)
            return f"result-{len(calls)}"

        assert register.execute_once("k", op) == "result-1"
        assert register.execute_once("k", op) == "result-1"
        assert len(calls) == 1

    def test_concurrent_identical_keys_run_once(self, register: IdempotencyRegister) -> None:
        release = threading.Event()
        started = threading.Event()
        calls: list[int] = []
        results: list[str] = []

        def op() -> str:
            calls.append(1)
            started.set()
            release.wait(5)
            return "done"

        def worker() -> None:
            results.append(register.execute_once("same", op))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        assert started.wait(5)
        release.set()
        for t in threads:
            t.join(5)

        assert len(calls) == 1
        assert results == ["done"] * 8

    def test_distinct_keys_do_not_block_each_other(self, register: IdempotencyRegister) -> None:
        release = threading.Event()
        started = threading.Event()

        def slow() -> str:
            started.set()
            release.wait(5)
            return "slow"

        t = threading.Thread(target=register.execute_once, args=("a", slow))
        t.start()
        assert started.wait(5)
        try:
            assert register.execute_once("b", lambda: "fast") == "fast"
        finally:
            release.set()
            t.join(5)

    def test_failed_operation_releases_key(self, register: IdempotencyRegister) -> None:
        def boom() -> str:
            raise RuntimeError("upload failed")

        with pytest.raises(RuntimeError):
            register.execute_once("k", boom)
        assert register.lookup("k") is None
        assert register.execute_once("k", lambda: "ok") == "ok"

    def test_expired_key_runs_again(self, register: IdempotencyRegister, clock: FakeClock) -> None:
        calls: list[int] = []

        def op() -> int:
            calls.append(1)
            return len(calls)

        assert register.execute_once("k", op) == 1
        clock.advance(61)
        assert register.lookup("k") is None
        assert register.execute_once("k", op) == 2

    def test_per_call_ttl(self, register: IdempotencyRegister, clock: FakeClock) -> None:
        register.execute_once("short", lambda: "v", ttl_seconds=5)
        clock.advance(6)
        assert register.lookup("short") is None


class TestHousekeeping:
    def test_sweep_removes_expired(self, register: IdempotencyRegister, clock: FakeClock) -> None:
        register.execute_once("a", lambda: 1)
        register.execute_once("b", lambda: 2)
        clock.advance(10)
        register.execute_once("c", lambda: 3)
        clock.advance(55)

        assert register.sweep() == 2
        assert len(register) == 1
        assert register.lookup("c").result == 3

    def test_capacity_is_bounded(self, clock: FakeClock) -> None:
        small = IdempotencyRegister(ttl_seconds=60, max_entries=3, clock=clock)
        for i in range(10):
            small.execute_once(f"k{i}", lambda i=i: i)
        assert len(small) == 3

    def test_start_and_close(self, register: IdempotencyRegister) -> None:
        register.execute_once("k", lambda: 1)
        register.start()
        register.close()
        assert len(register) == 0
