"""
In-memory stand-ins for the Postgres-backed repository and OpenAI client.

InMemoryRepository implements the TradeRepository methods the pipeline uses.
Its transaction() snapshots state and restores it if the block raises, and
runs after-commit callbacks only on success, mirroring PostgresClient.
"""

import copy
from contextlib import asynccontextmanager
from datetime import datetime
from uuid import UUID

from listing_pipeline.models import (
    Category,
    Condition,
    JargonEntry,
    Listing,
    ListingStatus,
    Manufacturer,
    NotificationRule,
    RawMessage,
    ReviewQueueItem,
    Unit,
)
from listing_pipeline.prompts.extract_listings import ExtractionResult


class FakeTransaction:
    def __init__(self):
        self.callbacks = []

    def after_commit(self, callback):
        self.callbacks.append(callback)


class InMemoryRepository:
    def __init__(self):
        self.messages: dict[UUID, RawMessage] = {}
        self.listings: dict[UUID, Listing] = {}
        self.review_items: dict[UUID, ReviewQueueItem] = {}
        self.categories: list[Category] = []
        self.manufacturers: list[Manufacturer] = []
        self.units: list[Unit] = []
        self.conditions: list[Condition] = []
        self.jargon: list[JargonEntry] = []
        self.rules: list[NotificationRule] = []
        self.inactive_users: set[UUID] = set()
        self.rule_triggers: dict[UUID, datetime] = {}
        self.message_embeddings: dict[UUID, list[float]] = {}
        self.transactions_committed = 0
        self.transactions_rolled_back = 0

    # -- transactions -------------------------------------------------------

    _STATE = ('messages', 'listings', 'review_items', 'jargon')

    @asynccontextmanager
    async def transaction(self):
        snapshot = {name: copy.deepcopy(getattr(self, name)) for name in self._STATE}
        tx = FakeTransaction()
        try:
            yield tx
        except BaseException:
            for name, value in snapshot.items():
                setattr(self, name, value)
            self.transactions_rolled_back += 1
            raise
        self.transactions_committed += 1
        for callback in tx.callbacks:
            callback()

    # -- messages -----------------------------------------------------------

    def add_message(self, message: RawMessage) -> RawMessage:
        self.messages[message.id] = message
        return message

    async def get_message(self, message_id, tx=None):
        message = self.messages.get(message_id)
        return message.model_copy() if message else None

    async def record_message(self, message, on_commit=None):
        if any(m.external_message_id == message.external_message_id for m in self.messages.values()):
            return False
        async with self.transaction() as tx:
            self.messages[message.id] = message
            if on_commit is not None:
                tx.after_commit(lambda: on_commit(message.id))
        return True

    async def update_message_embedding(self, message_id, embedding, tx=None):
        self.message_embeddings[message_id] = embedding

    async def mark_processed(self, message_id, tx=None):
        message = self.messages[message_id]
        if message.processed:
            return False
        message.processed = True
        message.processing_error = None
        return True

    async def record_processing_error(self, message_id, error, tx=None):
        self.messages[message_id].processing_error = error

    async def find_unprocessed(self, limit, exclude_ids=None, tx=None):
        excluded = set(exclude_ids or [])
        pending = [
            m for m in self.messages.values() if not m.processed and m.id not in excluded
        ]
        pending.sort(key=lambda m: m.received_at)
        return [m.model_copy() for m in pending[:limit]]

    async def count_unprocessed(self, tx=None):
        return sum(1 for m in self.messages.values() if not m.processed)

    async def count_messages(self, tx=None):
        return len(self.messages)

    async def reset_all_processed(self, tx=None):
        for message in self.messages.values():
            message.processed = False
            message.processing_error = None
        return len(self.messages)

    # -- listings -----------------------------------------------------------

    async def create_listing(self, listing, tx=None):
        self.listings[listing.id] = listing.model_copy()
        return listing

    async def find_listing_by_source_external_id(self, external_message_id, tx=None):
        for message in self.messages.values():
            if message.external_message_id != external_message_id:
                continue
            for listing in self.listings.values():
                if listing.raw_message_id == message.id:
                    return listing.model_copy()
        return None

    async def mark_listing_sold(self, listing_id, sold_at, sold_message_id, buyer_name, tx=None):
        listing = self.listings[listing_id]
        if listing.status not in (ListingStatus.ACTIVE, ListingStatus.PENDING_REVIEW):
            return False
        listing.status = ListingStatus.SOLD
        listing.sold_at = sold_at
        listing.sold_message_id = sold_message_id
        listing.buyer_name = buyer_name
        return True

    async def find_listing_ids_by_status(self, statuses, tx=None):
        return [l.id for l in self.listings.values() if l.status in statuses]

    async def delete_listings_by_status(self, statuses, tx=None):
        doomed = [lid for lid, l in self.listings.items() if l.status in statuses]
        for lid in doomed:
            del self.listings[lid]
        return len(doomed)

    # -- review queue -------------------------------------------------------

    async def create_review_item(self, item, tx=None):
        self.review_items[item.id] = item
        return item

    async def delete_review_items_for_listings(self, listing_ids, tx=None):
        ids = set(listing_ids)
        doomed = [rid for rid, r in self.review_items.items() if r.listing_id in ids]
        for rid in doomed:
            del self.review_items[rid]
        return len(doomed)

    def review_items_for(self, listing_id):
        return [r for r in self.review_items.values() if r.listing_id == listing_id]

    # -- reference data -----------------------------------------------------

    async def find_category_by_name(self, name, tx=None):
        return next((c for c in self.categories if c.name.lower() == name.lower()), None)

    async def list_category_names(self, tx=None):
        return [c.name for c in self.categories if c.is_active]

    async def find_manufacturer_by_name(self, name, tx=None):
        return next((m for m in self.manufacturers if m.name.lower() == name.lower()), None)

    async def list_active_manufacturers(self, tx=None):
        return [m for m in self.manufacturers if m.is_active]

    async def find_unit_by_name(self, name, tx=None):
        return next((u for u in self.units if u.name.lower() == name.lower()), None)

    async def find_unit_by_abbreviation(self, abbreviation, tx=None):
        return next(
            (u for u in self.units if u.abbreviation and u.abbreviation.lower() == abbreviation.lower()),
            None,
        )

    async def find_condition_by_name(self, name, tx=None):
        return next((c for c in self.conditions if c.name.lower() == name.lower()), None)

    async def find_condition_by_abbreviation(self, abbreviation, tx=None):
        return next(
            (
                c
                for c in self.conditions
                if c.abbreviation and c.abbreviation.lower() == abbreviation.lower()
            ),
            None,
        )

    async def list_active_conditions(self, tx=None):
        return sorted((c for c in self.conditions if c.is_active), key=lambda c: c.sort_order)

    # -- jargon -------------------------------------------------------------

    async def list_verified_jargon(self, tx=None):
        return [j for j in self.jargon if j.verified]

    async def learn_jargon_terms(self, terms, tx=None):
        added = 0
        for term in terms:
            term = term.strip()
            if not term:
                continue
            existing = next((j for j in self.jargon if j.acronym.lower() == term.lower()), None)
            if existing is not None:
                existing.usage_count += 1
                continue
            self.jargon.append(JargonEntry(acronym=term, expansion=term))
            added += 1
        return added

    # -- rules --------------------------------------------------------------

    async def list_active_rules(self, tx=None):
        return [r for r in self.rules if r.is_active and r.user_id not in self.inactive_users]

    async def touch_rule_triggered(self, rule_id, when, tx=None):
        self.rule_triggers[rule_id] = when


class StubExtractor:
    """Returns a fixed ExtractionResult and records the text it was given."""

    def __init__(self, result: ExtractionResult | None = None, error: Exception | None = None):
        self.result = result or ExtractionResult.fallback()
        self.error = error
        self.calls: list[str | None] = []

    async def extract(self, text, jargon=None):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.result
