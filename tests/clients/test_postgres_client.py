"""Tests for PostgresClient - pooled PostgreSQL access returning dicts."""

from unittest.mock import MagicMock, patch
from uuid import uuid4

import psycopg2
import pytest

from clients.postgres_client import PostgresClient

DATABASE_URL = "postgresql://flashcards@localhost/flashcards_test"


@pytest.fixture
def pool():
    """Patched ThreadedConnectionPool handing out one mock connection."""
    PostgresClient.close_all_pools()
    with patch("clients.postgres_client.psycopg2.pool.ThreadedConnectionPool") as pool_cls:
        pool = pool_cls.return_value
        conn = MagicMock()
        pool.getconn.return_value = conn
        yield pool
    PostgresClient._connection_pools.clear()


@pytest.fixture
def cursor(pool):
    cur = MagicMock()
    pool.getconn.return_value.cursor.return_value.__enter__.return_value = cur
    return cur


@pytest.fixture
def db(pool):
    return PostgresClient(DATABASE_URL)


class TestPostgresClientInit:
    """Connection pool initialization."""

    def test_pool_shared_per_url(self, pool, db):
        """Second client for the same URL reuses the pool."""
        PostgresClient(DATABASE_URL)
        assert len(PostgresClient._connection_pools) == 1

    def test_close_removes_pool(self, pool, db):
        db.close()

        pool.closeall.assert_called_once()
        assert DATABASE_URL not in PostgresClient._connection_pools

    def test_pool_sizing_passed_through(self):
        PostgresClient.close_all_pools()
        with patch("clients.postgres_client.psycopg2.pool.ThreadedConnectionPool") as pool_cls:
            PostgresClient(DATABASE_URL, min_connections=1, max_connections=5, connect_timeout=3)

        assert pool_cls.call_args.kwargs == {
            "minconn": 1,
            "maxconn": 5,
            "dsn": DATABASE_URL,
            "connect_timeout": 3,
        }
        PostgresClient._connection_pools.clear()

    @pytest.mark.parametrize("min_connections,max_connections", [(0, 5), (5, 2)])
    def test_invalid_pool_size(self, min_connections, max_connections):
        with pytest.raises(ValueError, match="Invalid pool size"):
            PostgresClient(DATABASE_URL, min_connections=min_connections, max_connections=max_connections)


class TestExecuteMethods:
    """Query execution methods."""

    def test_execute_returns_list_of_dicts(self, db, cursor):
        cursor.description = [("num",)]
        cursor.fetchall.return_value = [{"num": 1}]

        assert db.execute("SELECT 1 as num") == [{"num": 1}]

    def test_execute_without_rows_commits(self, db, cursor, pool):
        """Statements without a result set are committed and return []."""
        cursor.description = None

        assert db.execute("UPDATE users SET verified = true") == []
        pool.getconn.return_value.commit.assert_called_once()

    def test_execute_single_returns_first(self, db, cursor):
        cursor.description = [("answer",)]
        cursor.fetchall.return_value = [{"answer": 42}, {"answer": 43}]

        assert db.execute_single("SELECT answer") == {"answer": 42}

    def test_execute_single_no_rows_returns_none(self, db, cursor):
        cursor.description = [("answer",)]
        cursor.fetchall.return_value = []

        assert db.execute_single("SELECT 1 WHERE false") is None

    def test_execute_scalar(self, db, cursor):
        cursor.fetchone.return_value = (7,)
        assert db.execute_scalar("SELECT 7") == 7

    def test_execute_returning_commits(self, db, cursor, pool):
        cursor.fetchall.return_value = [{"id": 1}]

        assert db.execute_returning("INSERT ... RETURNING id") == [{"id": 1}]
        pool.getconn.return_value.commit.assert_called_once()

    def test_execute_update_returns_rowcount(self, db, cursor, pool):
        cursor.rowcount = 2

        assert db.execute_update("UPDATE api_keys SET revoked = true WHERE user_id = %s", (uuid4(),)) == 2
        pool.getconn.return_value.commit.assert_called_once()

    def test_uuid_params_converted(self, db, cursor):
        """UUIDs (including inside lists) are sent as strings."""
        user_id = uuid4()
        cursor.fetchone.return_value = (1,)

        db.execute_scalar("SELECT 1 WHERE id = %s AND x = ANY(%s)", (user_id, [user_id]))

        assert cursor.execute.call_args.args[1] == (str(user_id), [str(user_id)])

    def test_ping(self, db, cursor):
        cursor.fetchone.return_value = (1,)
        assert db.ping() is True


class TestConnectionHandling:
    """Connections always go back to the pool."""

    def test_connection_returned_after_success(self, db, cursor, pool):
        cursor.fetchone.return_value = (1,)
        db.execute_scalar("SELECT 1")

        pool.putconn.assert_called_once_with(pool.getconn.return_value)

    def test_error_rolls_back_and_returns_connection(self, db, cursor, pool):
        cursor.execute.side_effect = psycopg2.OperationalError("connection lost")

        with pytest.raises(psycopg2.OperationalError):
            db.execute_scalar("SELECT 1")

        pool.getconn.return_value.rollback.assert_called_once()
        pool.putconn.assert_called_once()

    def test_exhausted_pool_raises(self, db, pool):
        pool.getconn.return_value = None

        with pytest.raises(RuntimeError, match="Could not get connection"):
            db.execute_scalar("SELECT 1")
