"""Tests for the per-run operation id generator."""

from __future__ import annotations

import concurrent.futures
import logging
import threading

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from longhaul.kernel.ids import INVALID_OPERATION_ID, UniqueIdGenerator


class TestUniqueIdGenerator:
    def test_first_id_is_one(self) -> None:
        assert UniqueIdGenerator().next_id() == 1

    def test_pre_increments(self) -> None:
        gen = UniqueIdGenerator()
        assert [gen.next_id() for _ in range(5)] == [1, 2, 3, 4, 5]
        assert gen.last_id == 5

    def test_generators_are_independent(self) -> None:
        a, b = UniqueIdGenerator(), UniqueIdGenerator()
        a.next_id()
        a.next_id()
        assert b.next_id() == 1

    def test_lock_failure_returns_sentinel(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        gen = UniqueIdGenerator(lock_timeout=0.05)
        gen._lock.acquire()
        try:
            with caplog.at_level(logging.ERROR, logger="longhaul.kernel.ids"):
                assert gen.next_id() == INVALID_OPERATION_ID
        finally:
            gen._lock.release()
        assert "Failed to lock" in caplog.text
        # The failed attempt consumed nothing.
        assert gen.next_id() == 1

    def test_concurrent_callers_get_permutation(self) -> None:
        gen = UniqueIdGenerator()
        n_threads, per_thread = 8, 250
        barrier = threading.Barrier(n_threads)

        def worker() -> list[int]:
            barrier.wait()
            return [gen.next_id() for _ in range(per_thread)]

        with concurrent.futures.ThreadPoolExecutor(max_workers=n_threads) as pool:
            results = [f.result() for f in [pool.submit(worker) for _ in range(n_threads)]]

        ids = [i for chunk in results for i in chunk]
        total = n_threads * per_thread
        assert sorted(ids) == list(range(1, total + 1))
        assert INVALID_OPERATION_ID not in ids
        # Each caller observes its own ids in increasing order.
        for chunk in results:
            assert chunk == sorted(chunk)


class TestIdProperties:
    @given(n=st.integers(min_value=1, max_value=200))
    @settings(max_examples=25)
    def test_sequential_ids_are_one_to_n(self, n: int) -> None:
        gen = UniqueIdGenerator()
        assert [gen.next_id() for _ in range(n)] == list(range(1, n + 1))
