"""
Sold-reply detection.

A reply whose entire body is a sold confirmation ("Sold", "sold!", " SOLD.. ")
closes the listing extracted from the quoted message instead of going
through extraction.
"""

import re
from datetime import datetime, timezone

from ..clients.postgres_client import Transaction
from ..logging import get_logger
from ..models.listing import SELLABLE_STATUSES, Listing, ListingStatus
from ..models.message import RawMessage
from ..repository import TradeRepository

logger = get_logger(__name__)

SOLD_PATTERN = re.compile(r'\s*sold[!.]*\s*', re.IGNORECASE)


def is_sold_reply(message: RawMessage) -> bool:
    """True if message is a reply whose body is nothing but a sold confirmation."""
    if not message.is_reply or message.body is None:
        return False
    return SOLD_PATTERN.fullmatch(message.body) is not None


class SoldReplyDetector:
    """Marks the quoted message's listing as sold."""

    def __init__(self, repository: TradeRepository):
        self.repository = repository

    def detects(self, message: RawMessage) -> bool:
        return is_sold_reply(message)

    async def handle(self, message: RawMessage, tx: Transaction | None = None) -> list[Listing] | None:
        """
        Claim a sold reply and close the listing it quotes.

        Args:
            message: The sold reply
            tx: Transaction the sold transition and processed flag share

        Returns:
            The referenced listing as stored after the transition (unchanged
            if it was not in a sellable status), an empty list if none was
            found, or None if another run already processed the reply
        """
        if not await self.repository.mark_processed(message.id, tx=tx):
            logger.info('sold.already_processed')
            return None

        target = message.reply_to_external_id
        logger.info('sold.detected', reply_to=target)

        listing = await self.repository.find_listing_by_source_external_id(target, tx=tx)
        if listing is None:
            logger.info('sold.listing_not_found', reply_to=target)
            return []

        if listing.status not in SELLABLE_STATUSES:
            logger.info(
                'sold.status_unchanged',
                listing_id=str(listing.id),
                status=listing.status.value,
            )
            return [listing]

        sold_at = datetime.now(timezone.utc)
        buyer_name = None
        if message.sender_name is not None and message.sender_name != listing.sender_name:
            buyer_name = message.sender_name

        sold = await self.repository.mark_listing_sold(
            listing.id,
            sold_at=sold_at,
            sold_message_id=message.external_message_id,
            buyer_name=buyer_name,
            tx=tx,
        )
        if not sold:
            # Status changed between the read and the conditional update
            current = await self.repository.find_listing_by_source_external_id(target, tx=tx)
            logger.info(
                'sold.status_changed_concurrently',
                listing_id=str(listing.id),
                status=current.status.value if current else None,
            )
            return [current] if current else []

        listing.status = ListingStatus.SOLD
        listing.sold_at = sold_at
        listing.sold_message_id = message.external_message_id
        listing.buyer_name = buyer_name

        logger.info('sold.listing_sold', listing_id=str(listing.id), buyer_name=buyer_name)
        return [listing]
