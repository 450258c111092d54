"""
Listing and ReviewQueueItem models.

A Listing is one structured trade offer (or request) extracted from a raw
message. Its initial status is a deterministic function of the extraction
confidence; every pending_review listing has exactly one ReviewQueueItem.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class IntentType(str, Enum):
    """Whether the sender is offering or looking for the item."""

    SELL = 'sell'
    WANT = 'want'
    UNKNOWN = 'unknown'

    @classmethod
    def parse(cls, value: str | None) -> 'IntentType':
        """Map a free-form intent string onto the enum; anything unrecognised is UNKNOWN."""
        if value is None:
            return cls.UNKNOWN
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.UNKNOWN


class ListingStatus(str, Enum):
    """Lifecycle of a listing."""

    ACTIVE = 'active'
    PENDING_REVIEW = 'pending_review'
    EXPIRED = 'expired'
    SOLD = 'sold'
    DELETED = 'deleted'


# Statuses a reprocessing reset may delete and regenerate. Sold and deleted
# listings record real user actions and are never touched.
REPROCESSABLE_STATUSES: tuple[ListingStatus, ...] = (
    ListingStatus.ACTIVE,
    ListingStatus.PENDING_REVIEW,
    ListingStatus.EXPIRED,
)

# Statuses a "sold" reply may transition from
SELLABLE_STATUSES: tuple[ListingStatus, ...] = (
    ListingStatus.ACTIVE,
    ListingStatus.PENDING_REVIEW,
)


class Listing(BaseModel):
    """
    A structured trade listing.

    The four normalized references (category, manufacturer, unit, condition)
    are independently nullable: an unresolved reference never blocks creation.
    """

    id: UUID = Field(default_factory=uuid4)

    # Provenance
    raw_message_id: UUID = Field(..., description='Message the listing was extracted from')
    group_id: UUID | None = Field(default=None, description='Chat group of the source message')

    # Classification
    intent: IntentType = Field(default=IntentType.UNKNOWN)
    confidence_score: float = Field(default=0.0, ge=0.0, le=1.0)

    # Content
    description: str = Field(..., description='Item description')
    original_text: str = Field(default='', description='Full body of the source message')
    sender_name: str | None = None
    sender_phone: str | None = None

    # Normalized references
    category_id: UUID | None = None
    manufacturer_id: UUID | None = None
    unit_id: UUID | None = None
    condition_id: UUID | None = None

    # Free-form fields
    part_number: str | None = None
    model_name: str | None = None
    quantity: Decimal | None = None
    dial_color: str | None = None
    case_material: str | None = None
    year: int | None = None
    case_size_mm: Decimal | None = None
    set_composition: str | None = None
    bracelet_strap: str | None = None

    # Pricing
    price: Decimal | None = None
    price_currency: str | None = None
    price_usd: Decimal | None = None
    exchange_rate_to_usd: Decimal | None = None

    # Review / lifecycle
    status: ListingStatus = Field(default=ListingStatus.PENDING_REVIEW)
    needs_human_review: bool = True
    expires_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Sold metadata
    sold_at: datetime | None = None
    sold_message_id: str | None = Field(
        default=None, description='External ID of the reply that confirmed the sale'
    )
    buyer_name: str | None = None

    embedding: list[float] | None = None

    @property
    def is_active(self) -> bool:
        return self.status == ListingStatus.ACTIVE

    @property
    def is_pending_review(self) -> bool:
        return self.status == ListingStatus.PENDING_REVIEW

    def short_description(self, limit: int = 80) -> str:
        """Description clipped for log lines and mail subjects."""
        if len(self.description) <= limit:
            return self.description
        return self.description[: limit - 3] + '...'


class ReviewStatus(str, Enum):
    PENDING = 'pending'
    RESOLVED = 'resolved'
    SKIPPED = 'skipped'


class ReviewQueueItem(BaseModel):
    """A pending_review listing waiting for human confirmation."""

    id: UUID = Field(default_factory=uuid4)
    listing_id: UUID
    raw_message_id: UUID
    reason: str
    llm_explanation: str | None = None
    suggested_values: dict[str, Any] = Field(
        default_factory=dict, description='Snapshot of the extraction result'
    )
    status: ReviewStatus = ReviewStatus.PENDING
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
