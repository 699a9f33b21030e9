"""Background worker context for decoding, color extraction and inference.

Architecture:
    event loop (presentation) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> work

Jobs beyond the semaphore limit queue for ``queue_timeout`` seconds, then
raise TimeoutError.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from photoclassify.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Manages the semaphore and thread pool for background work."""

    def __init__(self, settings: Settings) -> None:
        self._timeout = settings.queue_timeout
        self._semaphore = asyncio.Semaphore(settings.max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=settings.max_concurrent,
            thread_name_prefix="photoclassify-worker",
        )
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()
        self._closed = False

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous function on the worker pool and await its result.

        Acquires the semaphore (with timeout), runs the function in the
        executor, and releases once the worker thread has finished. If the
        caller is cancelled the slot stays taken until the thread returns.

        Raises:
            TimeoutError: If the semaphore cannot be acquired within the timeout.
            RuntimeError: If the pool has been shut down.
        """
        if self._closed:
            raise RuntimeError("Inference pool is shut down")

        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._timeout)
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            future = asyncio.get_running_loop().run_in_executor(self._executor, func, *args)
        except BaseException:
            self._release()
            raise
        future.add_done_callback(self._on_job_done)
        return await asyncio.shield(future)

    def _on_job_done(self, future: asyncio.Future[object]) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.debug("Worker job failed: %r", future.exception())
        self._release()

    def _release(self) -> None:
        self._semaphore.release()
        with self._counter_lock:
            self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running jobs."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of jobs waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._closed = True
        self._executor.shutdown(wait=True)
        logger.debug("Worker pool shut down")
