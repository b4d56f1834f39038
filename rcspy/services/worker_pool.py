"""Worker pool for CPU-bound analysis work.

Archive decompression and string scanning would serialize on the event loop,
so the orchestrator submits them to a fixed-size pool of worker processes (or
threads) and awaits the returned future.
"""

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, Literal, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerPool:
    """Task submission interface backed by a ``concurrent.futures`` executor.

    Attributes:
        kind: ``process`` or ``thread``.
        max_workers: Size of the pool.
    """

    def __init__(self, kind: Literal["process", "thread"] = "process", max_workers: int = 4):
        self.kind = kind
        self.max_workers = max_workers
        self._executor: Executor | None = None

    def open(self) -> None:
        """Start the underlying executor. Safe to call more than once."""
        if self._executor is not None:
            return
        if self.kind == "process":
            self._executor = ProcessPoolExecutor(max_workers=self.max_workers)
        else:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="rcspy-worker"
            )
        logger.debug(f"Started {self.kind} worker pool with {self.max_workers} workers")

    def close(self) -> None:
        """Shut the executor down, waiting for running tasks."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    @property
    def is_open(self) -> bool:
        return self._executor is not None

    def submit(self, fn: Callable[..., T], *args: Any) -> "asyncio.Future[T]":
        """Schedule ``fn(*args)`` on the pool and return an awaitable future.

        Must be called from a running event loop. For a process pool ``fn``
        and its arguments must be picklable.
        """
        if self._executor is None:
            raise RuntimeError("Worker pool is not open")
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(self._executor, fn, *args)

    def __enter__(self) -> "WorkerPool":
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
