"""
Main pipeline orchestrator for turning raw trade messages into listings.

Per-message sequence:
1. Skip messages that are already processed
2. Mark blank messages processed with no listings
3. Short-circuit "sold" replies to the sold-reply detector
4. Embed the message (best-effort)
5. Expand verified jargon
6. Extract listings with the LLM
7. Route by confidence, create review items and mark processed (one transaction)
8. Broadcast, match notifications and learn unknown jargon (best-effort)

Entry points:
- Triggered: ``on_message_recorded`` submits the run to the worker pool after
  the recording transaction commits
- Synchronous: ``process_message`` runs inline and returns the listings
- Catchup: ``trigger_catchup`` / ``run_catchup`` drive the unprocessed backlog
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from ..broadcast import Broadcaster
from ..clients.openai_client import OpenAIClient
from ..config import config
from ..errors import MessageNotFoundError, PipelineError
from ..logging import PipelineTimer, get_logger, logging_context
from ..models.listing import REPROCESSABLE_STATUSES, Listing, ReviewQueueItem
from ..models.message import RawMessage
from ..prompts.extract_listings import ExtractionResult
from ..repository import TradeRepository
from .catchup import CatchupGuard, CatchupResult
from .extractor import ListingExtractor
from .jargon import JargonExpander
from .notifier import NotificationMatcher
from .router import ConfidenceRouter
from .sold import SoldReplyDetector
from .worker_pool import ProcessingWorkerPool

logger = get_logger(__name__)


class _AlreadyClaimed(Exception):
    """Another run marked the message processed while this one was extracting."""


@dataclass
class PipelineResult:
    """Result of processing one message through the pipeline."""

    message_id: str
    outcome: str = 'processed'  # processed | already_processed | blank | sold_reply

    listings: list[Listing] = field(default_factory=list)
    review_items: int = 0

    # Extraction details
    intent: str | None = None
    confidence: float | None = None
    unknown_terms: list[str] = field(default_factory=list)

    # Timing
    started_at: datetime = field(default_factory=datetime.now)
    processing_time_ms: int | None = None
    stage_timings: dict[str, float] = field(default_factory=dict)

    # Non-fatal step failures
    warnings: list[str] = field(default_factory=list)

    @property
    def listing_ids(self) -> list[str]:
        return [str(listing.id) for listing in self.listings]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            'message_id': self.message_id,
            'outcome': self.outcome,
            'listing_ids': self.listing_ids,
            'review_items': self.review_items,
            'intent': self.intent,
            'confidence': self.confidence,
            'unknown_terms': self.unknown_terms,
            'processing_time_ms': self.processing_time_ms,
            'stage_timings': self.stage_timings,
            'warnings': self.warnings,
        }


def build_review_item(
    listing: Listing, message: RawMessage, extraction: ExtractionResult
) -> ReviewQueueItem:
    """Review queue entry for a pending_review listing."""
    return ReviewQueueItem(
        listing_id=listing.id,
        raw_message_id=message.id,
        reason=f'Low confidence extraction (score: {extraction.confidence})',
        llm_explanation=(
            f'Extraction confidence {extraction.confidence} is below auto-accept threshold. '
            f'Intent: {extraction.intent}'
        ),
        suggested_values=extraction.model_dump(mode='json'),
    )


class ListingPipeline:
    """
    End-to-end pipeline for processing trade messages into listings.

    Orchestrates:
    - SoldReplyDetector: close listings from "sold" replies
    - JargonExpander: expand verified acronyms before extraction
    - ListingExtractor: LLM extraction with safe fallback
    - ConfidenceRouter: create listings routed by confidence
    - NotificationMatcher: alert users about new active listings
    - Broadcaster: real-time new-listing / review-item events

    Usage:
        pipeline = ListingPipeline(repository, extractor, router, pool=pool)
        listings = await pipeline.process_message(message_id)
    """

    def __init__(
        self,
        repository: TradeRepository,
        extractor: ListingExtractor,
        router: ConfidenceRouter,
        notifier: NotificationMatcher | None = None,
        broadcaster: Broadcaster | None = None,
        openai_client: OpenAIClient | None = None,
        pool: ProcessingWorkerPool | None = None,
        jargon_expander: JargonExpander | None = None,
        sold_detector: SoldReplyDetector | None = None,
        batch_size: int | None = None,
        progress_every: int | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            repository: Trade repository
            extractor: Listing extractor
            router: Confidence router
            notifier: Notification matcher for active listings (optional)
            broadcaster: Real-time broadcaster (optional)
            openai_client: Client for message embeddings (optional)
            pool: Worker pool for triggered and catchup runs
            jargon_expander: Jargon expander (default instance if omitted)
            sold_detector: Sold-reply detector (default instance if omitted)
            batch_size: Catchup batch size (defaults to CATCHUP_BATCH_SIZE)
            progress_every: Catchup progress log interval (defaults to CATCHUP_PROGRESS_EVERY)
        """
        self.repository = repository
        self.extractor = extractor
        self.router = router
        self.notifier = notifier
        self.broadcaster = broadcaster
        self.openai_client = openai_client
        self.pool = pool
        self.jargon_expander = jargon_expander or JargonExpander()
        self.sold_detector = sold_detector or SoldReplyDetector(repository)
        self.batch_size = batch_size or config.CATCHUP_BATCH_SIZE
        self.progress_every = progress_every or config.CATCHUP_PROGRESS_EVERY
        self._catchup_guard = CatchupGuard()

    # =========================================================================
    # Entry points
    # =========================================================================

    def on_message_recorded(self, message_id: UUID) -> bool:
        """
        Post-commit hook for a newly recorded message.

        Submits the triggered run to the worker pool and returns immediately.

        Returns:
            True if the run was queued
        """
        if self.pool is None:
            logger.warning('pipeline.no_worker_pool', message_id=str(message_id))
            return False
        return self.pool.submit(
            lambda: self.process_recorded(message_id),
            name=f'message:{message_id}',
        )

    async def process_recorded(self, message_id: UUID) -> PipelineResult | None:
        """
        Triggered entry point, run on a pool worker.

        Never raises: failures are recorded on the message and logged, and
        the message is left for the next catchup pass.
        """
        with logging_context(message_id=str(message_id)):
            try:
                message = await self.repository.get_message(message_id)
            except Exception:
                logger.exception('pipeline.load_failed')
                return None
            if message is None:
                logger.warning('pipeline.message_not_found')
                return None

            try:
                return await self._process(message)
            except Exception as e:
                await self._record_failure(message, e)
                return None

    async def process_message(self, message_id: UUID) -> list[Listing]:
        """
        Synchronous entry point for on-demand processing.

        Args:
            message_id: ID of the raw message

        Returns:
            Listings created (or, for a sold reply, the referenced listing)

        Raises:
            MessageNotFoundError: If the message does not exist
            PipelineError: If processing failed; the error is recorded on the message
        """
        with logging_context(message_id=str(message_id)):
            message = await self.repository.get_message(message_id)
            if message is None:
                raise MessageNotFoundError(
                    f'Message not found: {message_id}',
                    context={'message_id': str(message_id)},
                )

            try:
                result = await self._process(message)
            except Exception as e:
                await self._record_failure(message, e)
                raise PipelineError(
                    f'Processing failed for message {message_id}: {e}',
                    context={'message_id': str(message_id), 'error_type': type(e).__name__},
                ) from e
            return result.listings

    # =========================================================================
    # Per-message sequence
    # =========================================================================

    async def _process(self, message: RawMessage) -> PipelineResult:
        """Run the per-message sequence. Raises on pipeline-fatal failures."""
        result = PipelineResult(message_id=str(message.id))
        timer = PipelineTimer()

        with logging_context(
            message_id=str(message.id),
            group_id=str(message.group_id) if message.group_id else None,
        ):
            if message.processed:
                logger.info('pipeline.already_processed')
                result.outcome = 'already_processed'
                return result

            if not message.has_text:
                await self.repository.mark_processed(message.id)
                logger.info('pipeline.blank_message')
                result.outcome = 'blank'
                return result

            if self.sold_detector.detects(message):
                async with self.repository.transaction() as tx:
                    listings = await self.sold_detector.handle(message, tx=tx)
                if listings is None:
                    result.outcome = 'already_processed'
                    return result
                result.listings = listings
                result.outcome = 'sold_reply'
                return result

            logger.info('pipeline.started')

            with timer.stage('embedding'):
                await self._embed_message(message, result)

            with timer.stage('jargon'):
                jargon = await self.repository.list_verified_jargon()
                expanded = self.jargon_expander.expand(message.body, jargon)

            with timer.stage('extraction'):
                extraction = await self.extractor.extract(expanded, jargon)
            result.intent = extraction.intent
            result.confidence = extraction.confidence
            result.unknown_terms = list(extraction.unknown_terms)

            with timer.stage('routing'):
                # Network-bound enrichment runs before the row is claimed
                listings = await self.router.build(extraction, message)
                try:
                    async with self.repository.transaction() as tx:
                        if not await self.repository.mark_processed(message.id, tx=tx):
                            raise _AlreadyClaimed()
                        await self.router.persist(listings, tx=tx)
                        for listing in listings:
                            if listing.is_pending_review:
                                await self.repository.create_review_item(
                                    build_review_item(listing, message, extraction), tx=tx
                                )
                                result.review_items += 1
                except _AlreadyClaimed:
                    logger.info('pipeline.claimed_by_other_run')
                    result.outcome = 'already_processed'
                    return result
            result.listings = listings

            with timer.stage('side_effects'):
                await self._side_effects(listings, extraction, result)

            result.processing_time_ms = int(timer.total_ms)
            result.stage_timings = timer.stages.copy()
            logger.info(
                'pipeline.completed',
                listings=len(listings),
                review_items=result.review_items,
                warnings=len(result.warnings),
                **timer.summary(),
            )
            return result

    async def _embed_message(self, message: RawMessage, result: PipelineResult) -> None:
        if self.openai_client is None:
            return
        try:
            embedding = await self.openai_client.create_embedding(message.body or '')
            await self.repository.update_message_embedding(message.id, embedding)
        except Exception as e:
            logger.warning('pipeline.embedding_failed', error=str(e))
            result.warnings.append(f'embedding: {e}')

    async def _side_effects(
        self,
        listings: list[Listing],
        extraction: ExtractionResult,
        result: PipelineResult,
    ) -> None:
        """Best-effort steps after the listings are committed."""
        for listing in listings:
            if listing.is_active:
                if self.broadcaster is not None:
                    try:
                        await self.broadcaster.new_listing(listing)
                    except Exception as e:
                        logger.warning(
                            'pipeline.broadcast_failed', listing_id=str(listing.id), error=str(e)
                        )
                        result.warnings.append(f'broadcast: {e}')
                if self.notifier is not None:
                    try:
                        await self.notifier.match_and_dispatch(listing)
                    except Exception as e:
                        logger.warning(
                            'pipeline.notification_failed', listing_id=str(listing.id), error=str(e)
                        )
                        result.warnings.append(f'notification: {e}')
            elif listing.is_pending_review and self.broadcaster is not None:
                try:
                    await self.broadcaster.new_review_item(listing)
                except Exception as e:
                    logger.warning(
                        'pipeline.broadcast_failed', listing_id=str(listing.id), error=str(e)
                    )
                    result.warnings.append(f'broadcast: {e}')

        if extraction.unknown_terms:
            try:
                await self.repository.learn_jargon_terms(extraction.unknown_terms)
            except Exception as e:
                logger.warning('pipeline.jargon_learning_failed', error=str(e))
                result.warnings.append(f'jargon: {e}')

    async def _record_failure(self, message: RawMessage, exc: Exception) -> None:
        """Store the truncated error text on the message; the message stays unprocessed."""
        logger.error(
            'pipeline.failed',
            message_id=str(message.id),
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=exc,
        )
        error_text = str(exc)[: config.PROCESSING_ERROR_MAX_LENGTH]
        try:
            await self.repository.record_processing_error(message.id, error_text)
        except Exception:
            logger.exception('pipeline.record_error_failed', message_id=str(message.id))

    # =========================================================================
    # Catchup
    # =========================================================================

    def is_catchup_running(self) -> bool:
        return self._catchup_guard.running

    async def get_unprocessed_count(self) -> int:
        return await self.repository.count_unprocessed()

    def trigger_catchup(self) -> bool:
        """
        Start a catchup run on the worker pool.

        Returns:
            True if a run was started; False if one is already running or the
            pool rejected the job
        """
        if not self._catchup_guard.try_acquire():
            logger.warning('catchup.already_running')
            return False
        if self.pool is None or not self.pool.submit(self._run_catchup_guarded, name='catchup'):
            self._catchup_guard.release()
            logger.warning('catchup.not_submitted')
            return False
        return True

    async def run_catchup(self) -> CatchupResult | None:
        """
        Process the whole unprocessed backlog inline.

        Returns:
            CatchupResult, or None if another catchup is already running
        """
        if not self._catchup_guard.try_acquire():
            logger.warning('catchup.already_running')
            return None
        return await self._run_catchup_guarded()

    async def _run_catchup_guarded(self) -> CatchupResult:
        try:
            with logging_context(trace_id=f'catchup-{uuid4().hex[:12]}'):
                return await self._catchup()
        finally:
            self._catchup_guard.release()

    async def _catchup(self) -> CatchupResult:
        """
        Drive the backlog oldest-first in fixed-size batches.

        Each batch is re-queried from the start of the unprocessed set, since
        completed messages drop out of it. Only messages that fail in this run
        are excluded from later batches, so a persistent failure cannot loop.
        """
        run = CatchupResult()
        timer = PipelineTimer()
        failed_ids: list[UUID] = []
        logger.info('catchup.started', batch_size=self.batch_size)

        while True:
            batch = await self.repository.find_unprocessed(self.batch_size, exclude_ids=failed_ids)
            if not batch:
                break
            run.batches += 1

            for message in batch:
                try:
                    with logging_context(message_id=str(message.id)):
                        result = await self._process(message)
                    run.outcomes.record(result.outcome)
                except Exception as e:
                    await self._record_failure(message, e)
                    run.outcomes.record_failure(str(message.id), e)
                    failed_ids.append(message.id)

                if run.outcomes.attempted % self.progress_every == 0:
                    logger.info(
                        'catchup.progress',
                        processed=run.processed,
                        failed=run.failed,
                    )

        run.duration_ms = int(timer.total_ms)
        logger.info(
            'catchup.completed',
            processed=run.processed,
            failed=run.failed,
            batches=run.batches,
            duration_ms=run.duration_ms,
        )
        return run

    # =========================================================================
    # Reprocessing
    # =========================================================================

    async def reset_for_reprocessing(self) -> dict[str, int]:
        """
        Delete re-extractable listings and re-queue every message.

        Active, pending_review and expired listings are deleted together with
        their review items; sold and deleted listings are kept. All messages
        are then marked unprocessed so the next catchup regenerates them.

        Returns:
            Counts: listings_deleted, review_items_deleted, messages_reset
        """
        async with self.repository.transaction() as tx:
            listing_ids = await self.repository.find_listing_ids_by_status(
                REPROCESSABLE_STATUSES, tx=tx
            )
            review_items_deleted = 0
            listings_deleted = 0
            if listing_ids:
                review_items_deleted = await self.repository.delete_review_items_for_listings(
                    listing_ids, tx=tx
                )
                listings_deleted = await self.repository.delete_listings_by_status(
                    REPROCESSABLE_STATUSES, tx=tx
                )
            messages_reset = await self.repository.reset_all_processed(tx=tx)

        counts = {
            'listings_deleted': listings_deleted,
            'review_items_deleted': review_items_deleted,
            'messages_reset': messages_reset,
        }
        logger.info('pipeline.reset_for_reprocessing', **counts)
        return counts
