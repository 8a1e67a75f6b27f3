"""
In-process worker pool for batch import jobs.

Job ids go through a bounded asyncio queue; a fixed number of worker tasks
pull ids and await the handler. Workers are started and cancelled by the
app lifespan.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from batch_errors import JobQueueFullError
from config import BATCH_QUEUE_SIZE, BATCH_WORKERS

logger = logging.getLogger(__name__)

JobHandler = Callable[[str], Awaitable[None]]


class JobRunner:
    def __init__(
        self,
        handler: Optional[JobHandler] = None,
        workers: int = BATCH_WORKERS,
        queue_size: int = BATCH_QUEUE_SIZE,
    ) -> None:
        self._handler = handler
        self._workers = max(1, workers)
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def full(self) -> bool:
        return self._queue.full()

    def ensure_capacity(self) -> None:
        """Raise JobQueueFullError when a submit would be rejected."""
        if self.full():
            raise self._full_error()

    def set_handler(self, handler: JobHandler) -> None:
        self._handler = handler

    async def start(self) -> None:
        if self.running:
            return
        if self._handler is None:
            raise RuntimeError("JobRunner started without a job handler.")
        self._tasks = [
            asyncio.create_task(self._worker_loop(index), name=f"batch-worker-{index}")
            for index in range(self._workers)
        ]
        logger.info("Started %s batch workers (queue size %s)", self._workers, self._queue.maxsize)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Stopped batch workers")

    def submit(self, job_id: str) -> None:
        try:
            self._queue.put_nowait(job_id)
        except asyncio.QueueFull as exc:
            raise self._full_error() from exc
        logger.info("[%s] Queued batch job (%s waiting)", job_id, self._queue.qsize())

    def _full_error(self) -> JobQueueFullError:
        return JobQueueFullError(
            f"Batch queue is full ({self._queue.maxsize} jobs waiting). Try again later."
        )

    async def join(self) -> None:
        """Wait until every queued job has been handled."""
        await self._queue.join()

    async def _worker_loop(self, index: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self._handler(job_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[%s] Batch worker %s crashed while handling job", job_id, index)
            finally:
                self._queue.task_done()
