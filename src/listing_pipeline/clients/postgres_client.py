"""
Postgres client for the listing pipeline.

Uses SQLAlchemy 2.0 async engine + asyncpg with raw SQL (``text()``).

Handles:
- Engine lifecycle (connect, close, connectivity check)
- Query helpers that run either standalone (own transaction) or inside a
  caller-provided Transaction
- Transactions with post-commit callbacks, used to signal "message durably
  recorded" only after the recording insert has committed
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from ..config import config
from ..errors import wrap_database_error

logger = structlog.get_logger(__name__)


def _sanitize_url(url: str) -> str:
    """Remove URL query params that asyncpg does not understand.

    Hosted Postgres URLs often include ``channel_binding=require`` and
    ``sslmode=require``, which are libpq parameters that asyncpg rejects.
    """
    _STRIP_PARAMS = {'channel_binding', 'sslmode'}
    parsed = urlparse(url)
    if not parsed.query:
        return url
    params = parse_qs(parsed.query)
    filtered = {k: v for k, v in params.items() if k not in _STRIP_PARAMS}
    new_query = urlencode(filtered, doseq=True)
    return urlunparse(parsed._replace(query=new_query))


def _normalise_driver(url: str) -> str:
    """Force the asyncpg driver prefix."""
    if url.startswith('postgres://'):
        return url.replace('postgres://', 'postgresql+asyncpg://', 1)
    if url.startswith('postgresql://') and '+asyncpg' not in url:
        return url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    return url


@dataclass
class Transaction:
    """
    An open database transaction.

    Repository calls that receive a Transaction run on its connection, so
    their writes commit (or roll back) together. Callbacks registered with
    ``after_commit`` run only once the transaction has committed.
    """

    conn: AsyncConnection
    _after_commit: list[Callable[[], Any]] = field(default_factory=list)

    def after_commit(self, callback: Callable[[], Any]) -> None:
        self._after_commit.append(callback)

    def run_after_commit_callbacks(self) -> None:
        for callback in self._after_commit:
            try:
                callback()
            except Exception:
                logger.exception('postgres_client.after_commit_callback_failed')
        self._after_commit.clear()


class PostgresClient:
    """
    Async Postgres client.

    Configuration via environment variables:
    - DATABASE_URL: Postgres URL (postgres://, postgresql:// or postgresql+asyncpg://)
    """

    def __init__(self, database_url: str | None = None, pool_size: int = 5):
        self._engine: AsyncEngine | None = None
        self._database_url = database_url or config.DATABASE_URL
        self._pool_size = pool_size

    async def connect(self, database_url: str | None = None) -> None:
        """
        Create the async engine. Idempotent: no-op if already connected.

        Args:
            database_url: Override the URL from __init__.
        """
        if self._engine is not None:
            return

        url = database_url or self._database_url
        if not url:
            raise ValueError('database_url is required')

        url = _normalise_driver(_sanitize_url(url))

        self._engine = create_async_engine(
            url,
            pool_size=self._pool_size,
            max_overflow=5,
            pool_pre_ping=True,
            pool_timeout=30,
        )
        logger.info('postgres_client.connected')

    async def close(self) -> None:
        """Dispose of the engine and connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            logger.info('postgres_client.closed')

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError('PostgresClient not connected, call connect() first')
        return self._engine

    async def verify_connectivity(self) -> bool:
        """Return True if we can execute a simple query."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text('SELECT 1'))
            return True
        except Exception:
            logger.exception('postgres_client.connectivity_check_failed')
            return False

    # =========================================================================
    # Transactions
    # =========================================================================

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """
        Open a transaction shared by several repository calls.

        Commits when the block exits normally, rolls back if it raises.
        Post-commit callbacks run after a successful commit only.
        """
        async with self.engine.begin() as conn:
            tx = Transaction(conn=conn)
            yield tx
        tx.run_after_commit_callbacks()

    # =========================================================================
    # Query helpers
    # =========================================================================

    async def fetch_all(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        tx: Transaction | None = None,
    ) -> list[dict[str, Any]]:
        """Run a query and return all rows as dicts."""
        try:
            if tx is not None:
                result = await tx.conn.execute(text(sql), params or {})
                return [dict(row) for row in result.mappings().all()]
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql), params or {})
                return [dict(row) for row in result.mappings().all()]
        except SQLAlchemyError as e:
            raise wrap_database_error(e, context={'sql': sql.strip().split('\n')[0]}) from e

    async def fetch_one(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        tx: Transaction | None = None,
    ) -> dict[str, Any] | None:
        """Run a query and return the first row, or None."""
        rows = await self.fetch_all(sql, params, tx)
        return rows[0] if rows else None

    async def execute(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        tx: Transaction | None = None,
    ) -> int:
        """Run a write statement and return the affected row count."""
        try:
            if tx is not None:
                result = await tx.conn.execute(text(sql), params or {})
                return result.rowcount
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql), params or {})
                return result.rowcount
        except SQLAlchemyError as e:
            raise wrap_database_error(e, context={'sql': sql.strip().split('\n')[0]}) from e
