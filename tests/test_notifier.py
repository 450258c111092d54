"""
Tests for notification rule matching.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from listing_pipeline.models import IntentType, Listing, ListingStatus, NotificationRule
from listing_pipeline.pipeline.notifier import NotificationMatcher, matches


def _listing(**kwargs) -> Listing:
    defaults = {
        "raw_message_id": uuid4(),
        "intent": IntentType.SELL,
        "description": "Parker hydraulic valve, NOS",
        "price": Decimal("50"),
        "status": ListingStatus.ACTIVE,
        "needs_human_review": False,
        "confidence_score": 0.9,
    }
    defaults.update(kwargs)
    return Listing(**defaults)


def _rule(**kwargs) -> NotificationRule:
    defaults = {"user_id": uuid4(), "nl_rule": "tell me about valves", "user_email": "u@example.com"}
    defaults.update(kwargs)
    return NotificationRule(**defaults)


class TestMatchPredicate:
    def test_rule_without_criteria_matches_anything(self):
        assert matches(_rule(), _listing())

    def test_intent_must_match(self):
        assert matches(_rule(parsed_intent=IntentType.SELL), _listing())
        assert not matches(_rule(parsed_intent=IntentType.WANT), _listing())

    def test_any_keyword_substring_case_insensitive(self):
        assert matches(_rule(parsed_keywords=["pump", "VALVE"]), _listing())
        assert not matches(_rule(parsed_keywords=["pump", "gasket"]), _listing())

    def test_category_constraint(self):
        category_id = uuid4()
        rule = _rule(parsed_category_ids=[category_id])
        assert matches(rule, _listing(category_id=category_id))
        assert not matches(rule, _listing(category_id=uuid4()))

    def test_listing_without_category_never_satisfies_category_rule(self):
        assert not matches(_rule(parsed_category_ids=[uuid4()]), _listing(category_id=None))

    def test_price_bounds_inclusive(self):
        rule = _rule(parsed_price_min=Decimal("50"), parsed_price_max=Decimal("100"))
        assert matches(rule, _listing(price=Decimal("50")))
        assert matches(rule, _listing(price=Decimal("100")))
        assert not matches(rule, _listing(price=Decimal("49.99")))
        assert not matches(rule, _listing(price=Decimal("100.01")))

    def test_null_price_fails_any_price_bound(self):
        assert not matches(_rule(parsed_price_min=Decimal("1")), _listing(price=None))
        assert not matches(_rule(parsed_price_max=Decimal("1000")), _listing(price=None))

    def test_criteria_are_anded(self):
        rule = _rule(parsed_intent=IntentType.SELL, parsed_keywords=["valve"], parsed_price_max=Decimal("10"))
        assert not matches(rule, _listing())


class TestNotificationMatcher:
    @pytest.mark.asyncio
    async def test_dispatches_each_matching_rule(self, repository):
        hit_a = _rule(parsed_keywords=["valve"])
        hit_b = _rule(parsed_intent=IntentType.SELL)
        miss = _rule(parsed_intent=IntentType.WANT)
        repository.rules = [hit_a, miss, hit_b]
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(return_value=True)

        listing = _listing()
        matched = await NotificationMatcher(repository, dispatcher).match_and_dispatch(listing)

        assert [r.id for r in matched] == [hit_a.id, hit_b.id]
        assert dispatcher.dispatch.await_count == 2
        dispatcher.dispatch.assert_any_await(hit_a, listing)

    @pytest.mark.asyncio
    async def test_inactive_rules_are_ignored(self, repository):
        repository.rules = [_rule(is_active=False)]
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock()

        matched = await NotificationMatcher(repository, dispatcher).match_and_dispatch(_listing())

        assert matched == []
        dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rules_of_inactive_users_are_ignored(self, repository):
        active = _rule()
        dormant = _rule()
        repository.rules = [dormant, active]
        repository.inactive_users.add(dormant.user_id)
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(return_value=True)

        matched = await NotificationMatcher(repository, dispatcher).match_and_dispatch(_listing())

        assert [r.id for r in matched] == [active.id]
        assert dispatcher.dispatch.await_count == 1

    @pytest.mark.asyncio
    async def test_listing_is_not_modified(self, repository):
        repository.rules = [_rule()]
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(return_value=True)
        listing = _listing()
        before = listing.model_dump()

        await NotificationMatcher(repository, dispatcher).match_and_dispatch(listing)

        assert listing.model_dump() == before

    @pytest.mark.asyncio
    async def test_failing_dispatch_does_not_stop_later_rules(self, repository):
        rules = [_rule(), _rule(), _rule()]
        repository.rules = rules
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(side_effect=[RuntimeError("db down"), True, True])
        listing = _listing()

        matched = await NotificationMatcher(repository, dispatcher).match_and_dispatch(listing)

        assert [r.id for r in matched] == [r.id for r in rules]
        assert dispatcher.dispatch.await_count == 3
        dispatcher.dispatch.assert_any_await(rules[2], listing)
