"""Detached background work with bounded concurrency."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackgroundFailure:
    """A background task that raised."""

    name: str
    error: BaseException
    timestamp: float = field(default_factory=time.time)


class BackgroundTasks:
    """Runs fire-and-forget coroutines on a bounded worker pool.

    Failures never reach whoever spawned the task. They are logged,
    kept in ``failures`` (newest last, bounded) and passed to
    ``on_error`` for diagnostics.
    """

    def __init__(
        self,
        max_workers: int = 4,
        max_failures: int = 100,
        on_error: Callable[[BackgroundFailure], Any] | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers
        self.on_error = on_error
        self.failures: deque[BackgroundFailure] = deque(maxlen=max_failures)
        self._semaphore: asyncio.Semaphore | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        """Number of spawned tasks that have not finished."""
        return len(self._tasks)

    def spawn(self, factory: Callable[[], Awaitable[Any]], name: str) -> asyncio.Task[Any]:
        """Schedule ``factory()`` to run once a worker is free.

        Must be called from inside a running event loop.
        """
        task = asyncio.create_task(self._run(factory, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait until every spawned task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _run(self, factory: Callable[[], Awaitable[Any]], name: str) -> None:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_workers)

        async with self._semaphore:
            try:
                await factory()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._record(name, e)

    def _record(self, name: str, error: Exception) -> None:
        logger.warning(f"Background task {name} failed: {type(error).__name__}: {error}")
        failure = BackgroundFailure(name=name, error=error)
        self.failures.append(failure)
        if self.on_error is None:
            return
        try:
            self.on_error(failure)
        except Exception as e:
            logger.warning(f"Background error handler raised: {e}")
