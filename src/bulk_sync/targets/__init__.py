"""
Target stores: set-based batch updates against the base table.
"""

from utils.database_types import DatabaseType
from utils.db_pool import BaseConnectionPool

from .base import TargetStore
from .postgres import PostgresTargetStore
from .sqlserver import SQLServerTargetStore


def create_target(
    db_type: DatabaseType | str,
    pool: BaseConnectionPool,
    table: str,
    key_columns: str | list[str],
    update_columns: list[str] | None = None,
    **options,
) -> TargetStore:
    """Target store for ``db_type`` with dialect-specific ``options``."""
    dialect = DatabaseType.parse(db_type)
    if dialect is DatabaseType.POSTGRESQL:
        return PostgresTargetStore(pool, table, key_columns, update_columns, **options)
    return SQLServerTargetStore(pool, table, key_columns, update_columns, **options)


__all__ = [
    "TargetStore",
    "PostgresTargetStore",
    "SQLServerTargetStore",
    "create_target",
]
