"""
Bounded worker pool for message processing.

Jobs are coroutine factories queued on a bounded asyncio.Queue and drained
by a fixed number of worker tasks, so callers that record messages never
wait on the pipeline. Submitting never blocks: when the queue is full the
job is rejected, the message stays unprocessed and the next catchup pass
picks it up.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from ..config import config
from ..logging import get_logger

logger = get_logger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


class ProcessingWorkerPool:
    """
    Fixed-size pool of asyncio worker tasks.

    Usage:
        pool = ProcessingWorkerPool(workers=4)
        await pool.start()
        pool.submit(lambda: pipeline.process_recorded(message_id), name='message')
        await pool.stop()
    """

    def __init__(self, workers: int | None = None, queue_size: int | None = None):
        self.workers = workers or config.PROCESSING_WORKERS
        self.queue_size = queue_size or config.PROCESSING_QUEUE_SIZE
        self._queue: asyncio.Queue[tuple[str, JobFactory]] | None = None
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        """Start the worker tasks. Idempotent."""
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._tasks = [
            asyncio.create_task(self._worker(i), name=f'processing-worker-{i}')
            for i in range(self.workers)
        ]
        logger.info('worker_pool.started', workers=self.workers, queue_size=self.queue_size)

    def submit(self, job: JobFactory, name: str = 'job') -> bool:
        """
        Queue a job without waiting.

        Args:
            job: Zero-argument callable returning an awaitable
            name: Label used in log lines

        Returns:
            True if queued, False if the pool is not running or the queue is full
        """
        if self._queue is None or not self.running:
            logger.warning('worker_pool.not_running', job=name)
            return False
        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            logger.warning('worker_pool.queue_full', job=name, queue_size=self.queue_size)
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        """
        Stop the workers.

        Args:
            drain: Finish queued jobs first; otherwise cancel immediately
        """
        if not self.running:
            return
        if drain:
            await self.join()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._queue = None
        logger.info('worker_pool.stopped', drained=drain)

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            name, job = await queue.get()
            try:
                await job()
            except Exception:
                logger.exception('worker_pool.job_failed', job=name, worker=index)
            finally:
                queue.task_done()
