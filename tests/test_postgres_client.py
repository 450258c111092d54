"""
Tests for the PostgresClient.

Tests cover:
- URL sanitising and driver normalisation
- Connection management (connect, close, verify_connectivity)
- Query helpers, standalone and inside a Transaction
- Post-commit callbacks (run on commit, skipped on rollback)
- SQLAlchemy error wrapping
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, ProgrammingError

from listing_pipeline.clients.postgres_client import (
    PostgresClient,
    Transaction,
    _normalise_driver,
    _sanitize_url,
)
from listing_pipeline.config import config
from listing_pipeline.errors import DatabaseConstraintError, DatabaseQueryError


# =============================================================================
# Fixtures
# =============================================================================


def _result(rows=None, rowcount=0):
    result = MagicMock()
    result.mappings.return_value.all.return_value = rows or []
    result.rowcount = rowcount
    return result


@pytest.fixture
def mock_engine():
    """Create a mock AsyncEngine with a mock connection context manager."""
    engine = AsyncMock()

    conn = AsyncMock()
    conn.execute = AsyncMock(return_value=_result())

    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=conn)
    ctx.__aexit__ = AsyncMock(return_value=False)

    engine.begin = MagicMock(return_value=ctx)
    engine.dispose = AsyncMock()

    return engine, conn


@pytest.fixture
def client(mock_engine):
    """Create a PostgresClient with a pre-injected mock engine."""
    engine, _ = mock_engine
    pg = PostgresClient()
    pg._engine = engine
    return pg


# =============================================================================
# URL helpers
# =============================================================================


class TestUrlHelpers:
    def test_sanitize_strips_libpq_params(self):
        url = 'postgresql://u:p@host/db?sslmode=require&channel_binding=require&application_name=x'
        assert _sanitize_url(url) == 'postgresql://u:p@host/db?application_name=x'

    def test_sanitize_without_query(self):
        assert _sanitize_url('postgresql://u:p@host/db') == 'postgresql://u:p@host/db'

    @pytest.mark.parametrize(
        'url,expected',
        [
            ('postgres://h/db', 'postgresql+asyncpg://h/db'),
            ('postgresql://h/db', 'postgresql+asyncpg://h/db'),
            ('postgresql+asyncpg://h/db', 'postgresql+asyncpg://h/db'),
        ],
    )
    def test_normalise_driver(self, url, expected):
        assert _normalise_driver(url) == expected


# =============================================================================
# Connection management
# =============================================================================


class TestConnection:
    @pytest.mark.asyncio
    async def test_connect_normalises_url(self):
        pg = PostgresClient(database_url='postgres://u:p@host/db?sslmode=require')
        with patch('listing_pipeline.clients.postgres_client.create_async_engine') as create:
            await pg.connect()
            await pg.connect()

        create.assert_called_once()
        assert create.call_args.args[0] == 'postgresql+asyncpg://u:p@host/db'
        assert create.call_args.kwargs['pool_size'] == 5

    @pytest.mark.asyncio
    async def test_connect_requires_url(self, monkeypatch):
        monkeypatch.setattr(config, 'DATABASE_URL', '')

        with pytest.raises(ValueError, match='database_url'):
            await PostgresClient().connect()

    def test_engine_before_connect(self):
        with pytest.raises(RuntimeError, match='not connected'):
            PostgresClient(database_url='postgresql://h/db').engine

    @pytest.mark.asyncio
    async def test_close_disposes_engine(self, client, mock_engine):
        engine, _ = mock_engine

        await client.close()

        engine.dispose.assert_awaited_once()
        assert client._engine is None

    @pytest.mark.asyncio
    async def test_verify_connectivity(self, client, mock_engine):
        _, conn = mock_engine

        assert await client.verify_connectivity() is True
        conn.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_verify_connectivity_failure(self, client, mock_engine):
        engine, _ = mock_engine
        engine.begin.side_effect = OSError('connection refused')

        assert await client.verify_connectivity() is False


# =============================================================================
# Query helpers
# =============================================================================


class TestQueryHelpers:
    @pytest.mark.asyncio
    async def test_fetch_all_returns_dicts(self, client, mock_engine):
        _, conn = mock_engine
        conn.execute.return_value = _result(rows=[{'id': 1}, {'id': 2}])

        rows = await client.fetch_all('SELECT id FROM listings WHERE status = :s', {'s': 'active'})

        assert rows == [{'id': 1}, {'id': 2}]
        assert conn.execute.call_args.args[1] == {'s': 'active'}

    @pytest.mark.asyncio
    async def test_fetch_one(self, client, mock_engine):
        _, conn = mock_engine
        conn.execute.return_value = _result(rows=[{'id': 7}])
        assert await client.fetch_one('SELECT 1') == {'id': 7}

        conn.execute.return_value = _result(rows=[])
        assert await client.fetch_one('SELECT 1') is None

    @pytest.mark.asyncio
    async def test_execute_returns_rowcount(self, client, mock_engine):
        _, conn = mock_engine
        conn.execute.return_value = _result(rowcount=3)

        assert await client.execute('UPDATE raw_messages SET processed = FALSE') == 3

    @pytest.mark.asyncio
    async def test_execute_in_transaction_uses_its_connection(self, client, mock_engine):
        engine, _ = mock_engine
        tx_conn = AsyncMock()
        tx_conn.execute = AsyncMock(return_value=_result(rowcount=1))
        tx = Transaction(conn=tx_conn)

        assert await client.execute('DELETE FROM listings', None, tx) == 1
        tx_conn.execute.assert_awaited_once()
        engine.begin.assert_not_called()

    @pytest.mark.asyncio
    async def test_constraint_error_wrapped(self, client, mock_engine):
        _, conn = mock_engine
        conn.execute.side_effect = IntegrityError(
            'INSERT INTO raw_messages', {}, Exception('duplicate key violates unique constraint')
        )

        with pytest.raises(DatabaseConstraintError) as exc_info:
            await client.execute('INSERT INTO raw_messages (id) VALUES (:id)', {'id': 1})

        assert exc_info.value.context['sql'] == 'INSERT INTO raw_messages (id) VALUES (:id)'

    @pytest.mark.asyncio
    async def test_query_error_wrapped(self, client, mock_engine):
        _, conn = mock_engine
        conn.execute.side_effect = ProgrammingError('SELEC 1', {}, Exception('syntax error at or near SELEC'))

        with pytest.raises(DatabaseQueryError):
            await client.fetch_all('SELEC 1')


# =============================================================================
# Transactions
# =============================================================================


class TestTransactions:
    @pytest.mark.asyncio
    async def test_callbacks_run_after_commit(self, client, mock_engine):
        _, conn = mock_engine
        calls = []

        async with client.transaction() as tx:
            assert tx.conn is conn
            tx.after_commit(lambda: calls.append('committed'))
            assert calls == []

        assert calls == ['committed']

    @pytest.mark.asyncio
    async def test_callbacks_skipped_on_rollback(self, client):
        calls = []

        with pytest.raises(RuntimeError):
            async with client.transaction() as tx:
                tx.after_commit(lambda: calls.append('committed'))
                raise RuntimeError('insert failed')

        assert calls == []

    def test_failing_callback_does_not_stop_others(self):
        calls = []
        tx = Transaction(conn=MagicMock())

        def broken():
            raise RuntimeError('pool stopped')

        tx.after_commit(broken)
        tx.after_commit(lambda: calls.append('second'))
        tx.run_after_commit_callbacks()

        assert calls == ['second']
