"""
Catchup single-flight guard and periodic scheduler.

Provides:
- CatchupGuard: atomically-checked flag; a second catchup while one runs is
  rejected, not queued
- CatchupResult: outcome of one catchup run
- CatchupScheduler: periodic check that submits catchup through the worker
  pool when no run is active and unprocessed messages exist
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from ..config import config
from ..errors import BatchOutcome
from ..logging import get_logger

if TYPE_CHECKING:
    from .pipeline import ListingPipeline

logger = get_logger(__name__)


class CatchupGuard:
    """Single-flight flag backed by a non-blocking lock acquire."""

    def __init__(self):
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def running(self) -> bool:
        return self._lock.locked()


@dataclass
class CatchupResult:
    """Result of one catchup run over the unprocessed backlog."""

    outcomes: BatchOutcome = field(default_factory=BatchOutcome)
    batches: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: int | None = None

    @property
    def processed(self) -> int:
        return self.outcomes.completed

    @property
    def failed(self) -> int:
        return self.outcomes.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            'processed': self.processed,
            'failed': self.failed,
            'by_outcome': dict(self.outcomes.outcomes),
            'failures': dict(self.outcomes.failures),
            'batches': self.batches,
            'started_at': self.started_at.isoformat(),
            'duration_ms': self.duration_ms,
        }


class CatchupScheduler:
    """
    Periodically triggers catchup.

    The scheduler never runs catchup itself: it goes through
    ``ListingPipeline.trigger_catchup``, which submits to the worker pool.
    """

    def __init__(self, pipeline: ListingPipeline, interval_seconds: float | None = None):
        self.pipeline = pipeline
        self.interval_seconds = (
            interval_seconds
            if interval_seconds is not None
            else config.AUTO_CATCHUP_INTERVAL_SECONDS
        )
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name='catchup-scheduler')
        logger.info('catchup_scheduler.started', interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info('catchup_scheduler.stopped')

    async def tick(self) -> bool:
        """
        Run one scheduling check.

        Returns:
            True if a catchup run was submitted
        """
        if self.pipeline.is_catchup_running():
            return False
        unprocessed = await self.pipeline.get_unprocessed_count()
        if unprocessed == 0:
            return False
        logger.info('catchup_scheduler.triggered', unprocessed=unprocessed)
        return self.pipeline.trigger_catchup()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.tick()
            except Exception:
                logger.exception('catchup_scheduler.tick_failed')
