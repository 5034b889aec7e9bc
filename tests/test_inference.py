"""Tests for the detection concurrency layer."""

from __future__ import annotations

import asyncio
import threading

import pytest

from haarscan.config import Settings
from haarscan.ml.inference import InferencePool


@pytest.fixture()
def pool() -> InferencePool:
    return InferencePool(Settings(max_concurrent=1))


class TestInferencePool:
    async def test_passes_fresh_cancel_event(self, pool: InferencePool) -> None:
        def work(a: int, b: int, *, cancel_event: threading.Event) -> tuple[int, bool]:
            return a + b, cancel_event.is_set()

        try:
            assert await pool.run(work, 2, 3) == (5, False)
            assert pool.active_count == 0
            assert pool.cancelled_count == 0
        finally:
            pool.shutdown()

    async def test_cancelling_the_caller_sets_the_event(self, pool: InferencePool) -> None:
        started = threading.Event()
        seen: list[threading.Event] = []

        def work(*, cancel_event: threading.Event) -> bool:
            seen.append(cancel_event)
            started.set()
            return cancel_event.wait(timeout=5.0)

        try:
            task = asyncio.create_task(pool.run(work))
            assert await asyncio.to_thread(started.wait, 5.0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            assert seen[0].is_set()
            assert pool.cancelled_count == 1
            assert pool.active_count == 0
        finally:
            pool.shutdown()

    async def test_exceptions_propagate_to_caller(self, pool: InferencePool) -> None:
        def work(*, cancel_event: threading.Event) -> None:
            raise ValueError("boom")

        try:
            with pytest.raises(ValueError, match="boom"):
                await pool.run(work)
            assert pool.active_count == 0
        finally:
            pool.shutdown()
