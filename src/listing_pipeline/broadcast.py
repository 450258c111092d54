"""
Real-time broadcast of pipeline events.

In-process topic fan-out to WebSocket subscribers:
- ``listings``: new_listing events for auto-accepted listings
- ``review-queue``: new_review_item events for listings awaiting review
- ``user:<id>``: notification_match events for one user

Publishing is fire-and-forget: a failed send drops that subscriber and is
never raised to the caller.
"""

from collections import defaultdict
from typing import Any, Protocol
from uuid import UUID

from .logging import get_logger
from .models.listing import Listing

logger = get_logger(__name__)

LISTINGS_TOPIC = 'listings'
REVIEW_QUEUE_TOPIC = 'review-queue'


def user_topic(user_id: UUID | str) -> str:
    return f'user:{user_id}'


class Subscriber(Protocol):
    """Anything with an async send_json, e.g. a FastAPI WebSocket."""

    async def send_json(self, data: Any) -> None: ...


class Broadcaster:
    """Topic -> subscribers registry with non-raising publish."""

    def __init__(self):
        self._subscribers: dict[str, set[Subscriber]] = defaultdict(set)

    def subscribe(self, topic: str, subscriber: Subscriber) -> None:
        self._subscribers[topic].add(subscriber)
        logger.debug('broadcast.subscribed', topic=topic, subscribers=len(self._subscribers[topic]))

    def unsubscribe(self, topic: str, subscriber: Subscriber) -> None:
        subscribers = self._subscribers.get(topic)
        if subscribers is None:
            return
        subscribers.discard(subscriber)
        if not subscribers:
            del self._subscribers[topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    async def publish(self, topic: str, payload: dict[str, Any]) -> int:
        """
        Send payload to every subscriber of topic.

        Returns:
            Number of subscribers that received the payload
        """
        delivered = 0
        for subscriber in list(self._subscribers.get(topic, ())):
            try:
                await subscriber.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning('broadcast.send_failed', topic=topic, error=str(e))
                self.unsubscribe(topic, subscriber)
        return delivered

    # =========================================================================
    # Pipeline events
    # =========================================================================

    async def new_listing(self, listing: Listing) -> int:
        return await self.publish(
            LISTINGS_TOPIC,
            {
                'type': 'new_listing',
                'listingId': str(listing.id),
                'description': listing.description,
                'intent': listing.intent.value,
                'groupId': str(listing.group_id) if listing.group_id else None,
            },
        )

    async def new_review_item(self, listing: Listing) -> int:
        return await self.publish(
            REVIEW_QUEUE_TOPIC,
            {
                'type': 'new_review_item',
                'listingId': str(listing.id),
                'description': listing.description,
            },
        )
