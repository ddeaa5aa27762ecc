"""
Unit tests for database connection pooling.

Tests connection pool behavior, health checks, recycling and error handling.
"""

import threading
import time
from contextlib import ExitStack
from datetime import timedelta
from unittest.mock import MagicMock, Mock, patch

import psycopg2
import psycopg2.extensions
import pyodbc
import pytest

from utils.db_pool import (
    BaseConnectionPool,
    PoolClosedError,
    PooledConnection,
    PoolExhaustedError,
    PostgresConnectionPool,
    SQLServerConnectionPool,
    create_pool,
)


class TestPooledConnection:
    """Test PooledConnection dataclass."""

    def test_mark_used(self):
        pooled = PooledConnection(connection=Mock())
        previous = pooled.last_used - timedelta(minutes=5)
        pooled.last_used = previous

        pooled.mark_used()

        assert pooled.last_used > previous
        assert pooled.use_count == 1
        assert pooled.is_healthy is True


class MockConnectionPool(BaseConnectionPool):
    """Mock implementation of BaseConnectionPool for testing."""

    def __init__(self, **kwargs):
        self.connections_created = 0
        self.connections_closed = 0
        self.resets = 0
        self.create_should_fail = False
        self.healthy = True
        kwargs.setdefault("health_check_interval", 3600)
        super().__init__(**kwargs)

    def _create_connection(self):
        if self.create_should_fail:
            raise OSError("Connection creation failed")
        self.connections_created += 1
        return Mock(name=f"conn-{self.connections_created}")

    def _is_connection_healthy(self, conn):
        return self.healthy

    def _close_connection(self, conn):
        self.connections_closed += 1

    def _reset_connection(self, conn):
        self.resets += 1

    def _is_connection_broken(self, conn, error):
        return isinstance(error, ConnectionError)

    def _get_db_type(self):
        return "mock"


@pytest.fixture
def pool():
    pool = MockConnectionPool(min_size=1, max_size=2, acquire_timeout=0.2, pool_name="test")
    yield pool
    pool.close()


class TestBaseConnectionPool:
    """Test pool mechanics with a mock dialect."""

    def test_fills_to_min_size(self, pool):
        assert pool.connections_created == 1
        assert pool.get_stats()["idle_connections"] == 1

    def test_min_size_above_max_size(self):
        with pytest.raises(ValueError, match="cannot exceed"):
            MockConnectionPool(min_size=3, max_size=2)

    def test_acquire_reuses_and_resets(self, pool):
        with pool.acquire() as first:
            pass
        with pool.acquire() as second:
            assert pool.get_stats()["active_connections"] == 1

        assert first is second
        assert pool.resets == 2
        assert pool.connections_created == 1

    def test_grows_to_max_size_then_times_out(self, pool):
        with pool.acquire():
            with pool.acquire():
                assert pool.get_stats()["total_connections"] == 2
                with pytest.raises(PoolExhaustedError, match="within 0.2s"):
                    with pool.acquire():
                        pass

    def test_waiting_acquire_gets_released_connection(self, pool):
        pool.acquire_timeout = 5
        borrowed = []

        def borrow():
            with pool.acquire() as conn:
                borrowed.append(conn)

        with ExitStack() as stack:
            stack.enter_context(pool.acquire())
            stack.enter_context(pool.acquire())
            waiter = threading.Thread(target=borrow)
            waiter.start()
            time.sleep(0.05)
            assert borrowed == []
        waiter.join(5)

        assert len(borrowed) == 1
        assert pool.connections_created == 2

    def test_broken_connection_is_recycled(self, pool):
        with pytest.raises(ConnectionError):
            with pool.acquire():
                raise ConnectionError("server closed the connection unexpectedly")

        assert pool.connections_closed == 1
        assert pool.get_stats()["total_connections"] == 0

    def test_application_error_keeps_connection(self, pool):
        with pytest.raises(ValueError):
            with pool.acquire():
                raise ValueError("bad row")

        assert pool.connections_closed == 0
        assert pool.get_stats()["idle_connections"] == 1

    def test_unhealthy_connection_replaced_on_acquire(self, pool):
        """An idle connection failing its check is closed; a fresh one is handed out unchecked"""
        pool.healthy = False
        with pool.acquire():
            pass
        assert pool.connections_closed == 1
        assert pool.connections_created == 2

    def test_expired_connections_recycled_by_health_sweep(self, pool):
        pool.max_lifetime = timedelta(seconds=-1)
        pool._perform_health_checks()

        # the expired connection is closed, then the pool refills to min_size
        assert pool.connections_closed == 1
        assert pool.connections_created == 2

    def test_creation_failure_counts_as_unavailable(self):
        pool = MockConnectionPool(min_size=0, max_size=1, acquire_timeout=0.1)
        pool.create_should_fail = True
        try:
            with pytest.raises(PoolExhaustedError):
                with pool.acquire():
                    pass
        finally:
            pool.close()

    def test_closed_pool(self, pool):
        pool.close()
        pool.close()
        assert pool.closed
        with pytest.raises(PoolClosedError):
            with pool.acquire():
                pass
        assert pool.connections_closed == 1


@pytest.fixture
def no_health_thread():
    with patch("utils.db_pool.base.threading.Thread"):
        yield


@pytest.mark.usefixtures("no_health_thread")
class TestPostgresConnectionPool:
    @patch("utils.db_pool.postgres.psycopg2.connect")
    def test_connections_open_in_autocommit(self, mock_connect):
        conn = MagicMock()
        mock_connect.return_value = conn

        PostgresConnectionPool(host="pg", port=5432, database="warehouse", user="u", password="p", min_size=1)

        kwargs = mock_connect.call_args.kwargs
        assert kwargs["dbname"] == "warehouse"
        assert kwargs["application_name"] == "bulk-sync"
        assert conn.autocommit is True

    @patch("utils.db_pool.postgres.psycopg2.connect")
    def test_reset_rolls_back_open_transaction(self, mock_connect):
        pool = PostgresConnectionPool(host="pg", port=5432, database="wh", user="u", password="p", min_size=0)
        conn = MagicMock()
        conn.get_transaction_status.return_value = psycopg2.extensions.TRANSACTION_STATUS_INERROR
        conn.autocommit = False

        pool._reset_connection(conn)

        conn.rollback.assert_called_once()
        assert conn.autocommit is True

    @patch("utils.db_pool.postgres.psycopg2.connect")
    def test_operational_error_marks_broken(self, mock_connect):
        pool = PostgresConnectionPool(host="pg", port=5432, database="wh", user="u", password="p", min_size=0)
        conn = MagicMock(closed=0)
        assert pool._is_connection_broken(conn, psycopg2.OperationalError("terminating connection"))
        assert not pool._is_connection_broken(conn, psycopg2.DataError("invalid input"))


@pytest.mark.usefixtures("no_health_thread")
class TestSQLServerConnectionPool:
    def test_requires_connection_details(self):
        with pytest.raises(ValueError, match="connection_string"):
            SQLServerConnectionPool(host="mssql", min_size=0)

    @patch("utils.db_pool.sqlserver.pyodbc.connect")
    def test_builds_connection_string(self, mock_connect):
        pool = SQLServerConnectionPool(
            host="mssql", port=1433, database="wh", user="sa", password="p", min_size=1,
        )
        assert "SERVER=mssql,1433;" in pool.connection_string
        assert pool.pool_name == "sqlserver-wh"
        mock_connect.assert_called_once_with(pool.connection_string, timeout=10)

    @patch("utils.db_pool.sqlserver.pyodbc.connect")
    def test_connection_string_passthrough(self, mock_connect):
        pool = SQLServerConnectionPool(connection_string="DRIVER={x};SERVER=db01;DATABASE=sales", min_size=0)
        assert pool.host == "db01"
        assert pool.database == "sales"

    @patch("utils.db_pool.sqlserver.pyodbc.connect")
    def test_link_failure_marks_broken(self, mock_connect):
        pool = SQLServerConnectionPool(connection_string="SERVER=db01;DATABASE=sales", min_size=0)
        assert pool._is_connection_broken(Mock(), pyodbc.Error("08S01", "Communication link failure"))
        assert not pool._is_connection_broken(Mock(), pyodbc.Error("23000", "Violation of PRIMARY KEY"))

    @patch("utils.db_pool.sqlserver.pyodbc.connect")
    def test_release_clears_lock_timeout(self, mock_connect):
        pool = SQLServerConnectionPool(connection_string="SERVER=db01;DATABASE=sales", min_size=0)
        conn = MagicMock(autocommit=False)

        pool._reset_connection(conn)

        conn.rollback.assert_called_once()
        assert conn.autocommit is True
        conn.cursor.return_value.execute.assert_called_once_with("SET LOCK_TIMEOUT -1")
        conn.cursor.return_value.close.assert_called_once()


@pytest.mark.usefixtures("no_health_thread")
class TestCreatePool:
    @patch("utils.db_pool.postgres.psycopg2.connect")
    def test_postgres(self, mock_connect):
        pool = create_pool(
            "postgres",
            {"host": "pg", "port": "6432", "database": "wh", "user": "u", "password": "p"},
            min_size=0,
            max_size=4,
        )
        assert isinstance(pool, PostgresConnectionPool)
        assert pool.port == 6432
        assert pool.max_size == 4

    @patch("utils.db_pool.sqlserver.pyodbc.connect")
    def test_sqlserver_connection_string(self, mock_connect):
        pool = create_pool("sqlserver", {"connection_string": "SERVER=db01;DATABASE=sales"}, min_size=0)
        assert isinstance(pool, SQLServerConnectionPool)
        assert pool.database == "sales"
