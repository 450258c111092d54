"""
Notification rule matching.

Evaluates one newly active listing against every active rule of an active
user. Criteria are ANDed; a criterion the rule does not specify matches
anything.
"""

from ..logging import get_logger
from ..models.listing import Listing
from ..models.notification import NotificationRule
from ..notifications import NotificationDispatcher
from ..repository import TradeRepository

logger = get_logger(__name__)


def matches(rule: NotificationRule, listing: Listing) -> bool:
    """
    True if listing satisfies every criterion the rule specifies.

    - intent: must equal the listing intent
    - keywords: at least one must be a case-insensitive substring of the description
    - category ids: the listing's resolved category must be one of them
    - price min/max: inclusive bounds; a listing without a price fails any bound
    """
    if rule.parsed_intent is not None and listing.intent != rule.parsed_intent:
        return False

    keywords = [k for k in rule.parsed_keywords if k]
    if keywords:
        description = listing.description.lower()
        if not any(k.lower() in description for k in keywords):
            return False

    if rule.parsed_category_ids:
        if listing.category_id is None or listing.category_id not in rule.parsed_category_ids:
            return False

    if rule.parsed_price_min is not None:
        if listing.price is None or listing.price < rule.parsed_price_min:
            return False
    if rule.parsed_price_max is not None:
        if listing.price is None or listing.price > rule.parsed_price_max:
            return False

    return True


class NotificationMatcher:
    """Matches listings against notification rules and dispatches hits."""

    def __init__(self, repository: TradeRepository, dispatcher: NotificationDispatcher):
        self.repository = repository
        self.dispatcher = dispatcher

    async def match_and_dispatch(self, listing: Listing) -> list[NotificationRule]:
        """
        Dispatch a notification for every rule the listing matches.

        Read-only with respect to the listing.

        Returns:
            The rules that matched
        """
        rules = await self.repository.list_active_rules()
        if not rules:
            logger.debug('notifier.no_active_rules', listing_id=str(listing.id))
            return []

        matched: list[NotificationRule] = []
        for rule in rules:
            if not matches(rule, listing):
                continue
            matched.append(rule)
            logger.info(
                'notifier.rule_matched',
                rule_id=str(rule.id),
                user_id=str(rule.user_id),
                listing_id=str(listing.id),
                description=listing.short_description(),
            )
            try:
                await self.dispatcher.dispatch(rule, listing)
            except Exception as e:
                logger.warning(
                    'notifier.dispatch_failed',
                    rule_id=str(rule.id),
                    listing_id=str(listing.id),
                    error=str(e),
                )

        logger.debug('notifier.matched', listing_id=str(listing.id), matched=len(matched))
        return matched
