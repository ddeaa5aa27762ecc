"""
Base classes for database connection pooling.

A pool is the bounded, shared connection resource the apply workers draw
from: each worker acquires one connection for one batch and the pool takes
it back on every exit path. Connections are health-checked and recycled
after max_idle_time / max_lifetime.
"""

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from queue import Empty, Full, Queue
from typing import Any

from opentelemetry import trace
from prometheus_client import Counter, Gauge, Histogram

from utils.metrics import get_or_create_metric
from utils.tracing import trace_operation

logger = logging.getLogger(__name__)


CONNECTION_POOL_SIZE = get_or_create_metric(
    lambda: Gauge(
        "bulk_sync_db_pool_size",
        "Current number of connections owned by the pool",
        ["database_type", "pool_name"],
    ),
    "bulk_sync_db_pool_size",
)

CONNECTION_POOL_ACTIVE = get_or_create_metric(
    lambda: Gauge(
        "bulk_sync_db_pool_active",
        "Number of connections currently lent out",
        ["database_type", "pool_name"],
    ),
    "bulk_sync_db_pool_active",
)

CONNECTION_POOL_WAITS = get_or_create_metric(
    lambda: Counter(
        "bulk_sync_db_pool_waits_total",
        "Number of acquisitions that had to wait for a free connection",
        ["database_type", "pool_name"],
    ),
    "bulk_sync_db_pool_waits",
)

CONNECTION_POOL_ERRORS = get_or_create_metric(
    lambda: Counter(
        "bulk_sync_db_pool_errors_total",
        "Number of connection pool errors",
        ["database_type", "pool_name", "error_type"],
    ),
    "bulk_sync_db_pool_errors",
)

CONNECTION_ACQUIRE_TIME = get_or_create_metric(
    lambda: Histogram(
        "bulk_sync_db_pool_acquire_seconds",
        "Time to acquire a connection from the pool",
        ["database_type", "pool_name"],
        buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    ),
    "bulk_sync_db_pool_acquire_seconds",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class PooledConnection:
    """A pooled DB-API connection plus bookkeeping."""

    connection: Any
    created_at: datetime = field(default_factory=_utcnow)
    last_used: datetime = field(default_factory=_utcnow)
    use_count: int = 0
    is_healthy: bool = True

    def mark_used(self) -> None:
        self.last_used = _utcnow()
        self.use_count += 1


class ConnectionPoolError(Exception):
    """Base exception for connection pool errors."""


class PoolExhaustedError(ConnectionPoolError):
    """No connection became available within acquire_timeout."""


class PoolClosedError(ConnectionPoolError):
    """The pool was used after close()."""


class BaseConnectionPool:
    """
    Thread-safe connection pool.

    Subclasses supply _create_connection, _is_connection_healthy,
    _close_connection, _reset_connection and _get_db_type.
    """

    def __init__(
        self,
        min_size: int = 1,
        max_size: int = 10,
        max_idle_time: int = 300,
        max_lifetime: int = 3600,
        health_check_interval: int = 60,
        acquire_timeout: float = 30.0,
        pool_name: str = "default",
    ):
        """
        Initialize connection pool.

        Args:
            min_size: Connections opened eagerly and kept alive
            max_size: Hard ceiling on open connections; size it to at least
                the worker concurrency so workers never starve each other
            max_idle_time: Seconds idle before a connection is recycled
            max_lifetime: Seconds before a connection is recycled regardless
            health_check_interval: Seconds between background health sweeps
            acquire_timeout: Seconds acquire() waits before PoolExhaustedError
            pool_name: Label used in metrics and logs
        """
        if min_size > max_size:
            raise ValueError(f"min_size ({min_size}) cannot exceed max_size ({max_size})")

        self.min_size = min_size
        self.max_size = max_size
        self.max_idle_time = timedelta(seconds=max_idle_time)
        self.max_lifetime = timedelta(seconds=max_lifetime)
        self.health_check_interval = health_check_interval
        self.acquire_timeout = acquire_timeout
        self.pool_name = pool_name

        self._idle: Queue[PooledConnection] = Queue(maxsize=max_size)
        self._all_connections: list[PooledConnection] = []
        self._lock = threading.RLock()
        self._closed = threading.Event()

        self._fill_to_min_size()

        self._health_check_thread = threading.Thread(
            target=self._health_check_worker,
            name=f"{pool_name}-health",
            daemon=True,
        )
        self._health_check_thread.start()

        logger.info(
            f"Initialized {self.__class__.__name__} '{pool_name}' "
            f"(min={min_size}, max={max_size})"
        )

    # -- subclass hooks -------------------------------------------------

    def _create_connection(self) -> Any:
        raise NotImplementedError

    def _is_connection_healthy(self, conn: Any) -> bool:
        raise NotImplementedError

    def _close_connection(self, conn: Any) -> None:
        raise NotImplementedError

    def _reset_connection(self, conn: Any) -> None:
        """Discard any transaction left open by the borrower."""
        raise NotImplementedError

    def _get_db_type(self) -> str:
        raise NotImplementedError

    # -- internals ------------------------------------------------------

    def _labels(self) -> dict[str, str]:
        return {"database_type": self._get_db_type(), "pool_name": self.pool_name}

    def _open_connection(self) -> PooledConnection | None:
        """Open and register one connection; caller holds the lock."""
        try:
            pooled = PooledConnection(connection=self._create_connection())
        except Exception as e:
            logger.error(f"Failed to create connection for pool '{self.pool_name}': {e}")
            CONNECTION_POOL_ERRORS.labels(**self._labels(), error_type="creation").inc()
            return None
        self._all_connections.append(pooled)
        return pooled

    def _fill_to_min_size(self) -> None:
        with self._lock:
            missing = self.min_size - len(self._all_connections)
            for _ in range(max(missing, 0)):
                pooled = self._open_connection()
                if pooled is not None:
                    self._idle.put_nowait(pooled)
            self._update_metrics()

    def _check_connection_health(self, pooled: PooledConnection) -> bool:
        now = _utcnow()
        if now - pooled.created_at > self.max_lifetime:
            logger.debug("Connection exceeded max lifetime, recycling")
            return False
        if now - pooled.last_used > self.max_idle_time:
            logger.debug("Connection exceeded max idle time, recycling")
            return False

        try:
            pooled.is_healthy = self._is_connection_healthy(pooled.connection)
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            CONNECTION_POOL_ERRORS.labels(**self._labels(), error_type="health_check").inc()
            pooled.is_healthy = False
        return pooled.is_healthy

    def _recycle_connection(self, pooled: PooledConnection) -> None:
        try:
            self._close_connection(pooled.connection)
        except Exception as e:
            logger.warning(f"Error closing connection: {e}")
        finally:
            with self._lock:
                if pooled in self._all_connections:
                    self._all_connections.remove(pooled)
                self._update_metrics()

    def _health_check_worker(self) -> None:
        while not self._closed.wait(self.health_check_interval):
            try:
                self._perform_health_checks()
            except Exception as e:
                logger.error(f"Health check worker error: {e}")

    def _perform_health_checks(self) -> None:
        """Recycle unhealthy idle connections, then top the pool back up."""
        healthy: list[PooledConnection] = []
        while True:
            try:
                pooled = self._idle.get_nowait()
            except Empty:
                break
            if self._check_connection_health(pooled):
                healthy.append(pooled)
            else:
                self._recycle_connection(pooled)
                logger.info("Recycled unhealthy idle connection")

        for pooled in healthy:
            self._idle.put_nowait(pooled)

        if not self._closed.is_set():
            self._fill_to_min_size()

    def _update_metrics(self) -> None:
        total = len(self._all_connections)
        CONNECTION_POOL_SIZE.labels(**self._labels()).set(total)
        CONNECTION_POOL_ACTIVE.labels(**self._labels()).set(total - self._idle.qsize())

    def _take_connection(self, deadline: float) -> tuple[PooledConnection, bool]:
        """
        Pop an idle connection, open a new one, or wait until deadline.

        The flag is True when the connection was opened by this call.
        """
        waited = False
        while True:
            try:
                return self._idle.get_nowait(), False
            except Empty:
                pass

            with self._lock:
                if len(self._all_connections) < self.max_size:
                    pooled = self._open_connection()
                    if pooled is not None:
                        return pooled, True

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                CONNECTION_POOL_ERRORS.labels(**self._labels(), error_type="timeout").inc()
                raise PoolExhaustedError(
                    f"No connection available in pool '{self.pool_name}' "
                    f"within {self.acquire_timeout}s"
                )

            if not waited:
                CONNECTION_POOL_WAITS.labels(**self._labels()).inc()
                waited = True

            try:
                return self._idle.get(timeout=min(remaining, 0.1)), False
            except Empty:
                continue

    def _release(self, pooled: PooledConnection, broken: bool) -> None:
        if self._closed.is_set() or broken:
            self._recycle_connection(pooled)
            return

        try:
            self._reset_connection(pooled.connection)
        except Exception as e:
            logger.warning(f"Failed to reset connection, recycling: {e}")
            self._recycle_connection(pooled)
            return

        try:
            self._idle.put_nowait(pooled)
        except Full:
            self._recycle_connection(pooled)
            return
        with self._lock:
            self._update_metrics()

    # -- public API -----------------------------------------------------

    @contextmanager
    def acquire(self) -> Iterator[Any]:
        """
        Borrow a connection for the duration of the with-block.

        The connection is always handed back, with any open transaction
        rolled back; if the block raised a connection-level error the
        connection is recycled instead.

        Raises:
            PoolClosedError: If the pool is closed
            PoolExhaustedError: If no connection is available within acquire_timeout
        """
        if self._closed.is_set():
            raise PoolClosedError(f"Connection pool '{self.pool_name}' is closed")

        start = time.monotonic()
        deadline = start + self.acquire_timeout

        with trace_operation(
            "db_pool_acquire",
            kind=trace.SpanKind.CLIENT,
            database_type=self._get_db_type(),
            pool_name=self.pool_name,
        ):
            while True:
                pooled, fresh = self._take_connection(deadline)
                if fresh or self._check_connection_health(pooled):
                    break
                self._recycle_connection(pooled)

        pooled.mark_used()
        with self._lock:
            self._update_metrics()
        CONNECTION_ACQUIRE_TIME.labels(**self._labels()).observe(time.monotonic() - start)

        broken = False
        try:
            yield pooled.connection
        except Exception as e:
            broken = self._is_connection_broken(pooled.connection, e)
            raise
        finally:
            self._release(pooled, broken)

    def _is_connection_broken(self, conn: Any, error: Exception) -> bool:
        """Whether ``error`` left ``conn`` unusable. Subclasses refine this."""
        return False

    def close(self) -> None:
        """Close every connection and stop the health check thread."""
        if self._closed.is_set():
            return

        logger.info(f"Closing connection pool '{self.pool_name}'")
        self._closed.set()

        with self._lock:
            for pooled in self._all_connections:
                try:
                    self._close_connection(pooled.connection)
                except Exception as e:
                    logger.warning(f"Error closing connection: {e}")
            self._all_connections.clear()

            while True:
                try:
                    self._idle.get_nowait()
                except Empty:
                    break
            self._update_metrics()

        logger.info(f"Connection pool '{self.pool_name}' closed")

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = len(self._all_connections)
            idle = self._idle.qsize()
            return {
                "pool_name": self.pool_name,
                "total_connections": total,
                "idle_connections": idle,
                "active_connections": total - idle,
                "min_size": self.min_size,
                "max_size": self.max_size,
                "closed": self._closed.is_set(),
            }
