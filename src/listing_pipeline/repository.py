"""
Postgres repository for the listing pipeline.

Provides:
- Raw message reads and pipeline-state writes (embedding, processed, error)
- Listing creation, sold transitions and reprocessing deletes
- Review queue item creation
- Reference data lookups (categories, manufacturers, units, conditions)
- Jargon dictionary reads and learning from extraction results
- Notification rule reads

Every method accepts an optional Transaction so that several calls can be
committed as one unit; without one each call runs in its own transaction.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable
from uuid import UUID

import structlog

from .clients.postgres_client import PostgresClient, Transaction
from .models.listing import IntentType, Listing, ListingStatus, ReviewQueueItem
from .models.message import RawMessage
from .models.notification import NotificationRule
from .models.reference import Category, Condition, JargonEntry, Manufacturer, Unit

logger = structlog.get_logger(__name__)


def _embedding_to_pgvector(embedding: list[float] | None) -> str | None:
    """Convert embedding list to pgvector literal string, e.g. '[0.1,0.2,...]'."""
    if embedding is None:
        return None
    return '[' + ','.join(str(f) for f in embedding) + ']'


def _statuses(statuses: tuple[ListingStatus, ...] | list[ListingStatus]) -> list[str]:
    return [s.value for s in statuses]


_MESSAGE_COLUMNS = """
    id, group_id, whapi_msg_id, sender_phone, sender_name, message_body,
    media_url, reply_to_msg_id, received_at, processed, processing_error
"""


def _row_to_message(row: dict[str, Any]) -> RawMessage:
    return RawMessage(
        id=row['id'],
        group_id=row.get('group_id'),
        external_message_id=row['whapi_msg_id'],
        sender_phone=row.get('sender_phone'),
        sender_name=row.get('sender_name'),
        body=row.get('message_body'),
        media_url=row.get('media_url'),
        reply_to_external_id=row.get('reply_to_msg_id'),
        received_at=row.get('received_at') or datetime.now(timezone.utc),
        processed=bool(row.get('processed')),
        processing_error=row.get('processing_error'),
    )


def _row_to_listing(row: dict[str, Any]) -> Listing:
    return Listing(
        id=row['id'],
        raw_message_id=row['raw_message_id'],
        group_id=row.get('group_id'),
        intent=IntentType.parse(row.get('intent')),
        confidence_score=row.get('confidence_score') or 0.0,
        description=row['item_description'],
        original_text=row.get('original_text') or '',
        sender_name=row.get('sender_name'),
        sender_phone=row.get('sender_phone'),
        category_id=row.get('item_category_id'),
        manufacturer_id=row.get('manufacturer_id'),
        unit_id=row.get('unit_id'),
        condition_id=row.get('condition_id'),
        part_number=row.get('part_number'),
        model_name=row.get('model_name'),
        quantity=row.get('quantity'),
        price=row.get('price'),
        price_currency=row.get('price_currency'),
        price_usd=row.get('price_usd'),
        exchange_rate_to_usd=row.get('exchange_rate_to_usd'),
        status=ListingStatus(row['status']),
        needs_human_review=bool(row.get('needs_human_review')),
        expires_at=row.get('expires_at'),
        created_at=row.get('created_at') or datetime.now(timezone.utc),
        sold_at=row.get('sold_at'),
        sold_message_id=row.get('sold_message_id'),
        buyer_name=row.get('buyer_name'),
    )


class TradeRepository:
    """
    CRUD operations over the trade-intel Postgres schema.

    Handles:
    - Message processing state
    - Listings and review queue items
    - Reference data, jargon and notification rules
    """

    def __init__(self, postgres_client: PostgresClient):
        """
        Initialize the repository.

        Args:
            postgres_client: Connected Postgres client
        """
        self.pg = postgres_client

    def transaction(self):
        """Open a transaction shared by several repository calls."""
        return self.pg.transaction()

    # =========================================================================
    # Raw Messages
    # =========================================================================

    async def get_message(self, message_id: UUID, tx: Transaction | None = None) -> RawMessage | None:
        row = await self.pg.fetch_one(
            f'SELECT {_MESSAGE_COLUMNS} FROM raw_messages WHERE id = :id',
            {'id': message_id},
            tx,
        )
        return _row_to_message(row) if row else None

    async def record_message(
        self,
        message: RawMessage,
        on_commit: Callable[[UUID], Any] | None = None,
    ) -> bool:
        """
        Durably record an incoming message.

        Duplicate external IDs are ignored. ``on_commit`` is called with the
        message id only after the insert has committed, so the message is
        never processed before it is visible.

        Returns:
            True if a new row was inserted
        """
        sql = """
            INSERT INTO raw_messages (
                id, group_id, whapi_msg_id, sender_phone, sender_name,
                message_body, media_url, reply_to_msg_id, timestamp_wa,
                received_at, processed
            ) VALUES (
                :id, :group_id, :whapi_msg_id, :sender_phone, :sender_name,
                :message_body, :media_url, :reply_to_msg_id, :received_at,
                :received_at, FALSE
            )
            ON CONFLICT (whapi_msg_id) DO NOTHING
        """
        params = {
            'id': message.id,
            'group_id': message.group_id,
            'whapi_msg_id': message.external_message_id,
            'sender_phone': message.sender_phone,
            'sender_name': message.sender_name,
            'message_body': message.body,
            'media_url': message.media_url,
            'reply_to_msg_id': message.reply_to_external_id,
            'received_at': message.received_at,
        }
        async with self.pg.transaction() as tx:
            inserted = await self.pg.execute(sql, params, tx) > 0
            if inserted and on_commit is not None:
                tx.after_commit(lambda: on_commit(message.id))

        if not inserted:
            logger.info('repository.duplicate_message', external_message_id=message.external_message_id)
        return inserted

    async def update_message_embedding(
        self, message_id: UUID, embedding: list[float], tx: Transaction | None = None
    ) -> None:
        await self.pg.execute(
            'UPDATE raw_messages SET embedding = CAST(:embedding AS vector) WHERE id = :id',
            {'id': message_id, 'embedding': _embedding_to_pgvector(embedding)},
            tx,
        )

    async def mark_processed(self, message_id: UUID, tx: Transaction | None = None) -> bool:
        """
        Claim the message as processed and clear any earlier error.

        Only flips an unprocessed message, so inside a transaction it doubles as
        a row lock: a concurrent run of the same message blocks here and then
        sees False.

        Returns:
            True if this call flipped the flag
        """
        count = await self.pg.execute(
            """
            UPDATE raw_messages SET processed = TRUE, processing_error = NULL
            WHERE id = :id AND processed = FALSE
            """,
            {'id': message_id},
            tx,
        )
        return count > 0

    async def record_processing_error(
        self, message_id: UUID, error: str, tx: Transaction | None = None
    ) -> None:
        await self.pg.execute(
            'UPDATE raw_messages SET processing_error = :error WHERE id = :id',
            {'id': message_id, 'error': error},
            tx,
        )

    async def find_unprocessed(
        self,
        limit: int,
        exclude_ids: list[UUID] | None = None,
        tx: Transaction | None = None,
    ) -> list[RawMessage]:
        """Oldest-received unprocessed messages first, skipping exclude_ids."""
        rows = await self.pg.fetch_all(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM raw_messages
            WHERE processed = FALSE AND NOT (id = ANY(:exclude_ids))
            ORDER BY received_at ASC
            LIMIT :limit
            """,
            {'limit': limit, 'exclude_ids': list(exclude_ids or [])},
            tx,
        )
        return [_row_to_message(r) for r in rows]

    async def count_unprocessed(self, tx: Transaction | None = None) -> int:
        row = await self.pg.fetch_one(
            'SELECT count(*) AS n FROM raw_messages WHERE processed = FALSE', None, tx
        )
        return int(row['n']) if row else 0

    async def count_messages(self, tx: Transaction | None = None) -> int:
        row = await self.pg.fetch_one('SELECT count(*) AS n FROM raw_messages', None, tx)
        return int(row['n']) if row else 0

    async def reset_all_processed(self, tx: Transaction | None = None) -> int:
        return await self.pg.execute(
            'UPDATE raw_messages SET processed = FALSE, processing_error = NULL', None, tx
        )

    # =========================================================================
    # Listings
    # =========================================================================

    async def create_listing(self, listing: Listing, tx: Transaction | None = None) -> Listing:
        sql = """
            INSERT INTO listings (
                id, raw_message_id, group_id, intent, confidence_score,
                item_description, item_category_id, manufacturer_id, part_number,
                model_name, quantity, unit_id, price, price_currency, price_usd,
                exchange_rate_to_usd, condition_id, dial_color, case_material,
                year, case_size_mm, set_composition, bracelet_strap,
                original_text, sender_name, sender_phone, status,
                needs_human_review, expires_at, created_at, embedding
            ) VALUES (
                :id, :raw_message_id, :group_id, :intent, :confidence_score,
                :item_description, :item_category_id, :manufacturer_id, :part_number,
                :model_name, :quantity, :unit_id, :price, :price_currency, :price_usd,
                :exchange_rate_to_usd, :condition_id, :dial_color, :case_material,
                :year, :case_size_mm, :set_composition, :bracelet_strap,
                :original_text, :sender_name, :sender_phone, :status,
                :needs_human_review, :expires_at, :created_at,
                CAST(:embedding AS vector)
            )
        """
        params = {
            'id': listing.id,
            'raw_message_id': listing.raw_message_id,
            'group_id': listing.group_id,
            'intent': listing.intent.value,
            'confidence_score': listing.confidence_score,
            'item_description': listing.description,
            'item_category_id': listing.category_id,
            'manufacturer_id': listing.manufacturer_id,
            'part_number': listing.part_number,
            'model_name': listing.model_name,
            'quantity': listing.quantity,
            'unit_id': listing.unit_id,
            'price': listing.price,
            'price_currency': listing.price_currency,
            'price_usd': listing.price_usd,
            'exchange_rate_to_usd': listing.exchange_rate_to_usd,
            'condition_id': listing.condition_id,
            'dial_color': listing.dial_color,
            'case_material': listing.case_material,
            'year': listing.year,
            'case_size_mm': listing.case_size_mm,
            'set_composition': listing.set_composition,
            'bracelet_strap': listing.bracelet_strap,
            'original_text': listing.original_text,
            'sender_name': listing.sender_name,
            'sender_phone': listing.sender_phone,
            'status': listing.status.value,
            'needs_human_review': listing.needs_human_review,
            'expires_at': listing.expires_at,
            'created_at': listing.created_at,
            'embedding': _embedding_to_pgvector(listing.embedding),
        }
        await self.pg.execute(sql, params, tx)
        return listing

    async def find_listing_by_source_external_id(
        self, external_message_id: str, tx: Transaction | None = None
    ) -> Listing | None:
        """Find the listing extracted from the message with this external ID."""
        row = await self.pg.fetch_one(
            """
            SELECT l.* FROM listings l
            JOIN raw_messages rm ON rm.id = l.raw_message_id
            WHERE rm.whapi_msg_id = :external_id
            ORDER BY l.created_at ASC
            LIMIT 1
            """,
            {'external_id': external_message_id},
            tx,
        )
        return _row_to_listing(row) if row else None

    async def mark_listing_sold(
        self,
        listing_id: UUID,
        sold_at: datetime,
        sold_message_id: str,
        buyer_name: str | None,
        tx: Transaction | None = None,
    ) -> bool:
        """
        Transition a listing to sold.

        Only active or pending_review listings move; returns False when the
        listing was in any other status.
        """
        count = await self.pg.execute(
            """
            UPDATE listings SET
                status = 'sold',
                sold_at = :sold_at,
                sold_message_id = :sold_message_id,
                buyer_name = :buyer_name,
                updated_at = now()
            WHERE id = :id AND status IN ('active', 'pending_review')
            """,
            {
                'id': listing_id,
                'sold_at': sold_at,
                'sold_message_id': sold_message_id,
                'buyer_name': buyer_name,
            },
            tx,
        )
        return count > 0

    async def find_listing_ids_by_status(
        self, statuses: tuple[ListingStatus, ...], tx: Transaction | None = None
    ) -> list[UUID]:
        rows = await self.pg.fetch_all(
            'SELECT id FROM listings WHERE status = ANY(:statuses)',
            {'statuses': _statuses(statuses)},
            tx,
        )
        return [r['id'] for r in rows]

    async def delete_listings_by_status(
        self, statuses: tuple[ListingStatus, ...], tx: Transaction | None = None
    ) -> int:
        return await self.pg.execute(
            'DELETE FROM listings WHERE status = ANY(:statuses)',
            {'statuses': _statuses(statuses)},
            tx,
        )

    # =========================================================================
    # Review Queue
    # =========================================================================

    async def create_review_item(
        self, item: ReviewQueueItem, tx: Transaction | None = None
    ) -> ReviewQueueItem:
        await self.pg.execute(
            """
            INSERT INTO review_queue (
                id, listing_id, raw_message_id, reason, llm_explanation,
                suggested_values, status, created_at
            ) VALUES (
                :id, :listing_id, :raw_message_id, :reason, :llm_explanation,
                CAST(:suggested_values AS jsonb), :status, :created_at
            )
            """,
            {
                'id': item.id,
                'listing_id': item.listing_id,
                'raw_message_id': item.raw_message_id,
                'reason': item.reason,
                'llm_explanation': item.llm_explanation,
                'suggested_values': json.dumps(item.suggested_values, default=str),
                'status': item.status.value,
                'created_at': item.created_at,
            },
            tx,
        )
        return item

    async def delete_review_items_for_listings(
        self, listing_ids: list[UUID], tx: Transaction | None = None
    ) -> int:
        if not listing_ids:
            return 0
        return await self.pg.execute(
            'DELETE FROM review_queue WHERE listing_id = ANY(:ids)',
            {'ids': listing_ids},
            tx,
        )

    # =========================================================================
    # Reference Data
    # =========================================================================

    async def find_category_by_name(self, name: str, tx: Transaction | None = None) -> Category | None:
        row = await self.pg.fetch_one(
            'SELECT id, name, parent_id, is_active FROM categories '
            'WHERE lower(name) = lower(:name) LIMIT 1',
            {'name': name},
            tx,
        )
        return Category(**row) if row else None

    async def list_category_names(self, tx: Transaction | None = None) -> list[str]:
        rows = await self.pg.fetch_all(
            'SELECT name FROM categories WHERE is_active = TRUE ORDER BY sort_order, name', None, tx
        )
        return [r['name'] for r in rows]

    async def find_manufacturer_by_name(
        self, name: str, tx: Transaction | None = None
    ) -> Manufacturer | None:
        row = await self.pg.fetch_one(
            'SELECT id, name, aliases, is_active FROM manufacturers '
            'WHERE lower(name) = lower(:name) LIMIT 1',
            {'name': name},
            tx,
        )
        return self._manufacturer(row) if row else None

    async def list_active_manufacturers(self, tx: Transaction | None = None) -> list[Manufacturer]:
        rows = await self.pg.fetch_all(
            'SELECT id, name, aliases, is_active FROM manufacturers WHERE is_active = TRUE ORDER BY name',
            None,
            tx,
        )
        return [self._manufacturer(r) for r in rows]

    @staticmethod
    def _manufacturer(row: dict[str, Any]) -> Manufacturer:
        return Manufacturer(
            id=row['id'],
            name=row['name'],
            aliases=list(row.get('aliases') or []),
            is_active=row.get('is_active', True),
        )

    async def find_unit_by_name(self, name: str, tx: Transaction | None = None) -> Unit | None:
        row = await self.pg.fetch_one(
            'SELECT id, name, abbreviation, is_active FROM units '
            'WHERE lower(name) = lower(:name) LIMIT 1',
            {'name': name},
            tx,
        )
        return Unit(**row) if row else None

    async def find_unit_by_abbreviation(
        self, abbreviation: str, tx: Transaction | None = None
    ) -> Unit | None:
        row = await self.pg.fetch_one(
            'SELECT id, name, abbreviation, is_active FROM units '
            'WHERE lower(abbreviation) = lower(:abbreviation) LIMIT 1',
            {'abbreviation': abbreviation},
            tx,
        )
        return Unit(**row) if row else None

    async def find_condition_by_name(self, name: str, tx: Transaction | None = None) -> Condition | None:
        row = await self.pg.fetch_one(
            'SELECT id, name, abbreviation, sort_order, is_active FROM conditions '
            'WHERE lower(name) = lower(:name) LIMIT 1',
            {'name': name},
            tx,
        )
        return Condition(**row) if row else None

    async def find_condition_by_abbreviation(
        self, abbreviation: str, tx: Transaction | None = None
    ) -> Condition | None:
        row = await self.pg.fetch_one(
            'SELECT id, name, abbreviation, sort_order, is_active FROM conditions '
            'WHERE lower(abbreviation) = lower(:abbreviation) LIMIT 1',
            {'abbreviation': abbreviation},
            tx,
        )
        return Condition(**row) if row else None

    async def list_active_conditions(self, tx: Transaction | None = None) -> list[Condition]:
        rows = await self.pg.fetch_all(
            'SELECT id, name, abbreviation, sort_order, is_active FROM conditions '
            'WHERE is_active = TRUE ORDER BY sort_order',
            None,
            tx,
        )
        return [Condition(**r) for r in rows]

    # =========================================================================
    # Jargon
    # =========================================================================

    async def list_verified_jargon(self, tx: Transaction | None = None) -> list[JargonEntry]:
        rows = await self.pg.fetch_all(
            """
            SELECT id, acronym, expansion, verified, source, confidence, usage_count
            FROM jargon_dictionary
            WHERE verified = TRUE
            ORDER BY length(acronym) DESC, acronym
            """,
            None,
            tx,
        )
        return [JargonEntry(**r) for r in rows]

    async def learn_jargon_terms(self, terms: list[str], tx: Transaction | None = None) -> int:
        """
        Record acronyms the extractor did not recognise.

        Known acronyms (case-insensitive) get their usage count bumped; new
        ones are stored unverified with the acronym as a placeholder expansion
        until an admin fills it in.

        Returns:
            Number of terms newly added
        """
        added = 0
        seen: set[str] = set()
        for raw in terms:
            term = (raw or '').strip()
            if not term or term.lower() in seen:
                continue
            seen.add(term.lower())

            bumped = await self.pg.execute(
                """
                UPDATE jargon_dictionary
                SET usage_count = usage_count + 1, updated_at = now()
                WHERE lower(acronym) = lower(:acronym)
                """,
                {'acronym': term},
                tx,
            )
            if bumped:
                continue

            entry = JargonEntry(acronym=term, expansion=term)
            await self.pg.execute(
                """
                INSERT INTO jargon_dictionary (
                    id, acronym, expansion, source, confidence, usage_count, verified
                ) VALUES (
                    :id, :acronym, :expansion, :source, :confidence, :usage_count, :verified
                )
                ON CONFLICT (acronym, expansion) DO NOTHING
                """,
                entry.model_dump(),
                tx,
            )
            added += 1

        if added:
            logger.info('repository.jargon_learned', added=added)
        return added

    # =========================================================================
    # Notification Rules
    # =========================================================================

    async def list_active_rules(self, tx: Transaction | None = None) -> list[NotificationRule]:
        """Active rules whose owning user is also active."""
        rows = await self.pg.fetch_all(
            """
            SELECT r.id, r.user_id, u.email AS user_email, r.nl_rule,
                   r.parsed_intent, r.parsed_keywords, r.parsed_category_ids,
                   r.parsed_price_min, r.parsed_price_max, r.notify_email,
                   r.is_active, r.last_triggered
            FROM notification_rules r
            JOIN users u ON u.id = r.user_id
            WHERE r.is_active = TRUE AND u.is_active = TRUE
            """,
            None,
            tx,
        )
        return [
            NotificationRule(
                id=r['id'],
                user_id=r['user_id'],
                user_email=r.get('user_email'),
                nl_rule=r['nl_rule'],
                parsed_intent=IntentType.parse(r['parsed_intent']) if r.get('parsed_intent') else None,
                parsed_keywords=list(r.get('parsed_keywords') or []),
                parsed_category_ids=list(r.get('parsed_category_ids') or []),
                parsed_price_min=_decimal(r.get('parsed_price_min')),
                parsed_price_max=_decimal(r.get('parsed_price_max')),
                notify_email=r.get('notify_email'),
                is_active=r.get('is_active', True),
                last_triggered=r.get('last_triggered'),
            )
            for r in rows
        ]

    async def touch_rule_triggered(
        self, rule_id: UUID, when: datetime, tx: Transaction | None = None
    ) -> None:
        await self.pg.execute(
            'UPDATE notification_rules SET last_triggered = :when WHERE id = :id',
            {'id': rule_id, 'when': when},
            tx,
        )


def _decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    return value if isinstance(value, Decimal) else Decimal(str(value))
