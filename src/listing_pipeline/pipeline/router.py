"""
Confidence-based routing of extraction results into listings.

The overall extraction confidence decides the fate of every item in the
message at once:
- below the review threshold: all items are discarded
- between the thresholds: listings are created as pending_review
- at or above the auto threshold: listings are created as active
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation

from ..clients.exchange_rate_client import ExchangeRateClient
from ..clients.openai_client import OpenAIClient
from ..clients.postgres_client import Transaction
from ..config import config
from ..errors import ValidationError
from ..logging import get_logger
from ..models.listing import IntentType, Listing, ListingStatus
from ..models.message import RawMessage
from ..prompts.extract_listings import ExtractedItem, ExtractionResult
from ..repository import TradeRepository
from .resolver import ReferenceResolver

logger = get_logger(__name__)

DESCRIPTION_FALLBACK_LENGTH = 500
NO_DESCRIPTION = 'No description available'


def _to_decimal(value: float | int | None) -> Decimal | None:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class ConfidenceRouter:
    """
    Creates listings from an extraction result, routed by confidence.

    Reference resolution, currency conversion and description embedding are
    all tolerant: a miss or failure leaves the field null and never blocks
    listing creation.
    """

    def __init__(
        self,
        repository: TradeRepository,
        openai_client: OpenAIClient | None = None,
        exchange_rate_client: ExchangeRateClient | None = None,
        resolver: ReferenceResolver | None = None,
        auto_threshold: float | None = None,
        review_threshold: float | None = None,
        expiry_days: int | None = None,
    ):
        """
        Initialize the router.

        Args:
            repository: Trade repository for persistence
            openai_client: Client for description embeddings (optional)
            exchange_rate_client: Client for USD conversion (optional)
            resolver: Reference resolver (defaults to one over the repository)
            auto_threshold: Confidence at or above which listings go active
            review_threshold: Confidence below which items are discarded
            expiry_days: Days until a new listing expires

        Raises:
            ValidationError: If the thresholds are out of range or inverted
        """
        self.repository = repository
        self.openai_client = openai_client
        self.exchange_rate_client = exchange_rate_client
        self.resolver = resolver or ReferenceResolver(repository)

        self.auto_threshold = (
            auto_threshold if auto_threshold is not None else config.CONFIDENCE_AUTO_THRESHOLD
        )
        self.review_threshold = (
            review_threshold if review_threshold is not None else config.CONFIDENCE_REVIEW_THRESHOLD
        )
        self.expiry_days = expiry_days if expiry_days is not None else config.LISTING_EXPIRY_DAYS

        if not (0.0 <= self.review_threshold <= 1.0 and 0.0 <= self.auto_threshold <= 1.0):
            raise ValidationError(
                'Confidence thresholds must be within [0, 1]',
                context={'auto': self.auto_threshold, 'review': self.review_threshold},
            )
        if self.review_threshold > self.auto_threshold:
            raise ValidationError(
                'Review threshold must not exceed auto threshold',
                context={'auto': self.auto_threshold, 'review': self.review_threshold},
            )

    def status_for(self, confidence: float) -> ListingStatus | None:
        """Status a listing gets at this confidence, or None if it is discarded."""
        if confidence < self.review_threshold:
            return None
        if confidence >= self.auto_threshold:
            return ListingStatus.ACTIVE
        return ListingStatus.PENDING_REVIEW

    async def route(
        self,
        result: ExtractionResult,
        message: RawMessage,
        tx: Transaction | None = None,
    ) -> list[Listing]:
        """Build and persist listings for one extraction result."""
        return await self.persist(await self.build(result, message), tx=tx)

    async def build(self, result: ExtractionResult, message: RawMessage) -> list[Listing]:
        """
        Build the listings for one extraction result without writing them.

        Reference lookups, USD conversion and description embeddings all
        happen here, so the caller can run them before opening the
        transaction that persists the listings.

        Args:
            result: Extraction result for the message
            message: Source message

        Returns:
            Unsaved listings, possibly empty
        """
        status = self.status_for(result.confidence)
        if status is None:
            logger.info(
                'router.discarded',
                confidence=result.confidence,
                review_threshold=self.review_threshold,
                items=len(result.items),
            )
            return []

        intent = IntentType.parse(result.intent)
        listings: list[Listing] = []
        for item in result.items:
            listing = await self._build_listing(item, message, intent, result.confidence, status)
            listing.embedding = await self._embed_description(listing.description)
            listings.append(listing)
        return listings

    async def persist(self, listings: list[Listing], tx: Transaction | None = None) -> list[Listing]:
        """Write built listings in the caller's transaction."""
        for listing in listings:
            await self.repository.create_listing(listing, tx=tx)
            logger.debug(
                'router.listing_created',
                listing_id=str(listing.id),
                status=listing.status.value,
                intent=listing.intent.value,
            )

        if listings:
            logger.info(
                'router.routed',
                listings=len(listings),
                confidence=listings[0].confidence_score,
                status=listings[0].status.value,
            )
        return listings

    async def _build_listing(
        self,
        item: ExtractedItem,
        message: RawMessage,
        intent: IntentType,
        confidence: float,
        status: ListingStatus,
    ) -> Listing:
        body = message.body or ''

        description = item.description
        if description is None or not description.strip():
            description = body[:DESCRIPTION_FALLBACK_LENGTH] if body.strip() else NO_DESCRIPTION

        refs = await self.resolver.resolve(
            category=item.category,
            manufacturer=item.manufacturer,
            unit=item.unit,
            condition=item.condition,
        )

        currency = item.currency.strip().upper() if item.currency and item.currency.strip() else None
        price = _to_decimal(item.price)

        listing = Listing(
            raw_message_id=message.id,
            group_id=message.group_id,
            intent=intent,
            confidence_score=confidence,
            description=description,
            original_text=body,
            sender_name=message.sender_name,
            sender_phone=message.sender_phone,
            category_id=refs.category_id,
            manufacturer_id=refs.manufacturer_id,
            unit_id=refs.unit_id,
            condition_id=refs.condition_id,
            part_number=item.part_number,
            model_name=item.model_name,
            quantity=_to_decimal(item.quantity),
            dial_color=item.dial_color,
            case_material=item.case_material,
            year=item.year,
            case_size_mm=_to_decimal(item.case_size_mm),
            set_composition=item.set_composition,
            bracelet_strap=item.bracelet_strap,
            price=price,
            price_currency=currency,
            status=status,
            needs_human_review=status != ListingStatus.ACTIVE,
            expires_at=datetime.now(timezone.utc) + timedelta(days=self.expiry_days),
        )

        if price is not None and currency is not None:
            await self._convert_to_usd(listing)
        return listing

    async def _convert_to_usd(self, listing: Listing) -> None:
        """Fill exchange_rate_to_usd and price_usd; failure leaves them null."""
        if self.exchange_rate_client is None:
            return
        today = date.today()
        try:
            rate = await self.exchange_rate_client.get_rate_to_usd(listing.price_currency, today)
            if rate is not None:
                listing.exchange_rate_to_usd = rate
                listing.price_usd = await self.exchange_rate_client.compute_usd_price(
                    listing.price, listing.price_currency, today
                )
        except Exception as e:
            logger.warning(
                'router.exchange_rate_failed',
                currency=listing.price_currency,
                error=str(e),
            )

    async def _embed_description(self, description: str) -> list[float] | None:
        if self.openai_client is None:
            return None
        try:
            return await self.openai_client.create_embedding(description)
        except Exception as e:
            logger.warning('router.embedding_failed', error=str(e))
            return None
