"""FastAPI application for the listing pipeline service."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from listing_pipeline.broadcast import Broadcaster
from listing_pipeline.clients.exchange_rate_client import ExchangeRateClient
from listing_pipeline.clients.openai_client import OpenAIClient
from listing_pipeline.clients.postgres_client import PostgresClient
from listing_pipeline.logging import configure_logging
from listing_pipeline.notifications import NotificationDispatcher
from listing_pipeline.pipeline import (
    CatchupScheduler,
    ConfidenceRouter,
    ListingExtractor,
    ListingPipeline,
    NotificationMatcher,
    ProcessingWorkerPool,
)
from listing_pipeline.repository import TradeRepository

from .config import get_settings
from .routes.admin import router as admin_router
from .routes.health import router as health_router
from .routes.messages import router as messages_router
from .routes.ws import router as ws_router

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize persistent clients and workers at startup, clean up at shutdown."""
    settings = get_settings()
    configure_logging(json_output=settings.LOG_JSON)

    logger.info("lifespan.startup", auto_catchup=settings.ENABLE_AUTO_CATCHUP)

    postgres = PostgresClient(settings.DATABASE_URL)
    await postgres.connect()
    if not await postgres.verify_connectivity():
        logger.warning("lifespan.postgres_connectivity_failed")

    openai = OpenAIClient(api_key=settings.OPENAI_API_KEY)
    exchange_rates = ExchangeRateClient()
    broadcaster = Broadcaster()

    repository = TradeRepository(postgres)
    dispatcher = NotificationDispatcher(repository, broadcaster=broadcaster)
    pool = ProcessingWorkerPool()
    await pool.start()

    pipeline = ListingPipeline(
        repository=repository,
        extractor=ListingExtractor(openai, repository=repository),
        router=ConfidenceRouter(
            repository,
            openai_client=openai,
            exchange_rate_client=exchange_rates,
        ),
        notifier=NotificationMatcher(repository, dispatcher),
        broadcaster=broadcaster,
        openai_client=openai,
        pool=pool,
    )

    scheduler: CatchupScheduler | None = None
    if settings.ENABLE_AUTO_CATCHUP:
        scheduler = CatchupScheduler(pipeline)
        scheduler.start()

    # Store on app.state for request handlers
    app.state.postgres = postgres
    app.state.openai = openai
    app.state.broadcaster = broadcaster
    app.state.repository = repository
    app.state.pipeline = pipeline
    app.state.pool = pool

    logger.info("lifespan.ready")
    yield

    # Shutdown
    logger.info("lifespan.shutdown")
    if scheduler is not None:
        await scheduler.stop()
    await pool.stop(drain=False)
    await exchange_rates.close()
    await openai.close()
    await postgres.close()


app = FastAPI(
    title="trade-listing-pipeline",
    description="Extracts structured trade listings from chat group messages",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(admin_router)
app.include_router(messages_router)
app.include_router(ws_router)
