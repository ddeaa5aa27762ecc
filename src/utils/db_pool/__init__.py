"""
Database connection pooling for PostgreSQL and SQL Server.

Provides thread-safe connection pools with health checks, metrics,
and automatic connection recycling to prevent stale connections.
"""

import logging
from typing import Any

from utils.database_types import DatabaseType

from .base import (
    BaseConnectionPool,
    ConnectionPoolError,
    PoolClosedError,
    PooledConnection,
    PoolExhaustedError,
)
from .postgres import PostgresConnectionPool
from .sqlserver import SQLServerConnectionPool

logger = logging.getLogger(__name__)


def create_pool(
    db_type: DatabaseType | str,
    config: dict[str, Any],
    min_size: int = 1,
    max_size: int = 10,
    **pool_kwargs: Any,
) -> BaseConnectionPool:
    """
    Build a pool for ``db_type`` from a connection config dict.

    Args:
        db_type: postgresql or sqlserver
        config: host/port/database/user/password (or connection_string
            for SQL Server), as produced by the CLI credential loader
        min_size: Minimum pool size
        max_size: Maximum pool size
        **pool_kwargs: Additional BaseConnectionPool options
    """
    dialect = DatabaseType.parse(db_type)
    logger.info(f"Creating {dialect.value} connection pool (min={min_size}, max={max_size})")

    if dialect is DatabaseType.POSTGRESQL:
        return PostgresConnectionPool(
            host=config["host"],
            port=int(config.get("port", 5432)),
            database=config["database"],
            user=config["user"],
            password=config["password"],
            min_size=min_size,
            max_size=max_size,
            **pool_kwargs,
        )

    if config.get("connection_string"):
        return SQLServerConnectionPool(
            connection_string=config["connection_string"],
            min_size=min_size,
            max_size=max_size,
            **pool_kwargs,
        )
    return SQLServerConnectionPool(
        host=config.get("host"),
        port=int(config.get("port", 1433)),
        database=config.get("database"),
        user=config.get("user"),
        password=config.get("password"),
        min_size=min_size,
        max_size=max_size,
        **pool_kwargs,
    )


__all__ = [
    "BaseConnectionPool",
    "PostgresConnectionPool",
    "SQLServerConnectionPool",
    "PooledConnection",
    "ConnectionPoolError",
    "PoolExhaustedError",
    "PoolClosedError",
    "create_pool",
]
