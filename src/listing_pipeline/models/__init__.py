"""
Data models for the listing pipeline.
"""

from .message import RawMessage
from .listing import (
    IntentType,
    Listing,
    ListingStatus,
    ReviewQueueItem,
    ReviewStatus,
    REPROCESSABLE_STATUSES,
    SELLABLE_STATUSES,
)
from .reference import Category, Condition, JargonEntry, Manufacturer, Unit
from .notification import NotificationRule

__all__ = [
    'RawMessage',
    'IntentType',
    'Listing',
    'ListingStatus',
    'ReviewQueueItem',
    'ReviewStatus',
    'REPROCESSABLE_STATUSES',
    'SELLABLE_STATUSES',
    'Category',
    'Condition',
    'JargonEntry',
    'Manufacturer',
    'Unit',
    'NotificationRule',
]
