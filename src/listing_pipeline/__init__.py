"""
Trade Listing Pipeline

Turns free-form messages from trade community chat groups into structured
listings: jargon expansion, OpenAI-powered extraction, confidence routing
into an auto-accepted catalog or a human review queue, notification rules
and backlog catchup, with Postgres storage.
"""

__version__ = '0.1.0'

# Re-export key classes for convenience
from .pipeline import (
    ListingPipeline,
    PipelineResult,
    JargonExpander,
    ListingExtractor,
    ConfidenceRouter,
    NotificationMatcher,
    SoldReplyDetector,
    CatchupScheduler,
    ProcessingWorkerPool,
)
from .repository import TradeRepository
from .logging import (
    configure_logging,
    get_logger,
    logging_context,
    PipelineTimer,
)
from .errors import (
    ListingPipelineError,
    PipelineError,
    ValidationError,
    MessageNotFoundError,
    OpenAIError,
    DatabaseError,
    BatchOutcome,
)

__all__ = [
    # Version
    '__version__',
    # Main Pipeline
    'ListingPipeline',
    'PipelineResult',
    # Components
    'JargonExpander',
    'ListingExtractor',
    'ConfidenceRouter',
    'NotificationMatcher',
    'SoldReplyDetector',
    'CatchupScheduler',
    'ProcessingWorkerPool',
    # Repository
    'TradeRepository',
    # Logging
    'configure_logging',
    'get_logger',
    'logging_context',
    'PipelineTimer',
    # Errors
    'ListingPipelineError',
    'PipelineError',
    'ValidationError',
    'MessageNotFoundError',
    'OpenAIError',
    'DatabaseError',
    'BatchOutcome',
]
