"""
Pipeline components for jargon expansion, extraction, confidence routing,
notification matching, sold-reply detection and catchup.
"""

from .catchup import CatchupGuard, CatchupResult, CatchupScheduler
from .extractor import ListingExtractor
from .jargon import JargonExpander
from .notifier import NotificationMatcher, matches
from .pipeline import ListingPipeline, PipelineResult, build_review_item
from .resolver import LookupChain, ReferenceResolver, ResolvedReferences
from .router import ConfidenceRouter
from .sold import SOLD_PATTERN, SoldReplyDetector, is_sold_reply
from .worker_pool import ProcessingWorkerPool

__all__ = [
    # Main Pipeline
    'ListingPipeline',
    'PipelineResult',
    'build_review_item',
    # Components
    'JargonExpander',
    'ListingExtractor',
    'ConfidenceRouter',
    'LookupChain',
    'ReferenceResolver',
    'ResolvedReferences',
    'NotificationMatcher',
    'matches',
    'SoldReplyDetector',
    'SOLD_PATTERN',
    'is_sold_reply',
    # Scheduling
    'CatchupGuard',
    'CatchupResult',
    'CatchupScheduler',
    'ProcessingWorkerPool',
]
