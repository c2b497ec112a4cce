"""Background dispatcher for scrape side effects.

Proxy usage reports, selector outcomes and scrape events are submitted as
jobs and run by worker tasks draining a bounded queue. Submission never
blocks the fetch path: when the queue is full the job is dropped and
counted. Job errors and timeouts are logged, never propagated.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from scrapegate.config import settings
from scrapegate.core.metrics import dispatcher_jobs_total, dispatcher_queue_depth

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[object]]


class EventDispatcher:
    """Runs fire-and-forget jobs on a fixed set of worker tasks."""

    def __init__(
        self,
        max_queue: int | None = None,
        workers: int | None = None,
        job_timeout: float = 30.0,
    ):
        self._max_queue = max_queue or settings.EVENT_QUEUE_SIZE
        self._worker_count = workers or settings.EVENT_WORKERS
        self._job_timeout = job_timeout
        self._queue: asyncio.Queue[tuple[str, JobFactory]] | None = None
        self._workers: list[asyncio.Task] = []
        self.dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def start(self) -> None:
        if self._workers:
            return
        self._queue = asyncio.Queue(maxsize=self._max_queue)
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"event-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.debug(f"Event dispatcher started with {self._worker_count} workers")

    def submit(self, kind: str, factory: JobFactory) -> bool:
        """Queue a job. Returns False if it was dropped."""
        if self._queue is None:
            logger.warning(f"Event dispatcher not running, dropping {kind} job")
            self.dropped += 1
            dispatcher_jobs_total.labels(kind=kind, status="dropped").inc()
            return False
        try:
            self._queue.put_nowait((kind, factory))
        except asyncio.QueueFull:
            self.dropped += 1
            dispatcher_jobs_total.labels(kind=kind, status="dropped").inc()
            logger.warning(f"Event queue full ({self._max_queue}), dropping {kind} job")
            return False
        dispatcher_queue_depth.set(self._queue.qsize())
        return True

    async def join(self) -> None:
        """Wait until every queued job has run."""
        if self._queue is not None:
            await self._queue.join()

    async def close(self, timeout: float | None = None) -> None:
        """Drain pending jobs (bounded by timeout), then stop the workers."""
        if not self._workers:
            return
        timeout = settings.EVENT_DRAIN_TIMEOUT if timeout is None else timeout
        try:
            await asyncio.wait_for(self.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Event dispatcher drain timed out with {self._queue.qsize()} jobs pending"
            )
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None

    async def _worker(self, index: int) -> None:
        while True:
            kind, factory = await self._queue.get()
            try:
                await asyncio.wait_for(factory(), timeout=self._job_timeout)
                dispatcher_jobs_total.labels(kind=kind, status="ok").inc()
            except asyncio.TimeoutError:
                dispatcher_jobs_total.labels(kind=kind, status="timeout").inc()
                logger.warning(f"{kind} job timed out after {self._job_timeout}s")
            except Exception as e:
                dispatcher_jobs_total.labels(kind=kind, status="error").inc()
                logger.warning(f"{kind} job failed: {e}")
            finally:
                self._queue.task_done()
                dispatcher_queue_depth.set(self._queue.qsize())
