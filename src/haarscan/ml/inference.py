"""Detection concurrency layer.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> cascade scan

Requests beyond the semaphore limit queue with a 5s timeout, then get 503.
Every call is handed a ``threading.Event`` that is set when the awaiting
request is cancelled; the scan checks it once per unit of work and stops
with ``ScanCancelledError`` instead of running on for nobody.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from haarscan.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Bounds concurrent detection calls and cancels the ones nobody awaits."""

    def __init__(self, settings: Settings) -> None:
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="cascade-detect",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._cancelled_count: int = 0
        self._counter_lock = threading.Lock()

    async def _acquire_slot(self) -> None:
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=SEMAPHORE_TIMEOUT_SECONDS)
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Call ``func(*args, cancel_event=event)`` on the detection thread pool.

        ``event`` is a fresh ``threading.Event`` per call. If the awaiting task
        is cancelled while ``func`` runs, the event is set before the
        cancellation propagates, so a scan in progress stops at its next unit
        of work.

        Raises:
            TimeoutError: If no slot frees up within ``SEMAPHORE_TIMEOUT_SECONDS``.
        """
        await self._acquire_slot()

        cancel_event = threading.Event()
        call = functools.partial(func, *args, cancel_event=cancel_event)
        with self._counter_lock:
            self._active_count += 1
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, call)
        except asyncio.CancelledError:
            cancel_event.set()
            with self._counter_lock:
                self._cancelled_count += 1
            logger.info("Detection call cancelled by its caller")
            raise
        finally:
            self._semaphore.release()
            with self._counter_lock:
                self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of detection calls currently holding a slot."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of requests waiting for a slot."""
        with self._counter_lock:
            return self._queue_depth

    @property
    def cancelled_count(self) -> int:
        """Number of calls whose caller went away before they finished."""
        with self._counter_lock:
            return self._cancelled_count

    def shutdown(self) -> None:
        """Shut down the thread pool, waiting for running scans to stop."""
        self._executor.shutdown(wait=True)
        logger.info("Detection pool shut down")
