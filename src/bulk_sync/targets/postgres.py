"""
PostgreSQL target: one ``UPDATE ... FROM (VALUES ...)`` per batch.

VALUES literals carry no column types, so every value is cast to the base
column's type. Types come from ``column_types`` when given, otherwise from
the catalog (looked up once per table and cached).
"""

import logging
from collections.abc import Sequence
from typing import Any

from psycopg2.extras import execute_values

from utils.database_types import DatabaseType
from utils.db_pool import BaseConnectionPool
from utils.sql_safety import validate_integer_param, validate_type_name

from ..errors import PermanentApplyError
from ..models import Batch
from .base import TargetStore

logger = logging.getLogger(__name__)

_COLUMN_TYPES_QUERY = (
    "SELECT a.attname, format_type(a.atttypid, NULL) "
    "FROM pg_attribute a "
    "WHERE a.attrelid = %s::regclass AND a.attnum > 0 AND NOT a.attisdropped"
)


class PostgresTargetStore(TargetStore):
    """
    Example:
        >>> target = PostgresTargetStore(
        ...     pool, "public.products", key_columns="sku",
        ...     update_columns=["price"], statement_timeout_ms=30_000,
        ... )
        >>> target.apply_batch(batch)
        1000
    """

    db_type = DatabaseType.POSTGRESQL

    def __init__(
        self,
        pool: BaseConnectionPool,
        table: str,
        key_columns: str | Sequence[str],
        update_columns: Sequence[str] | None = None,
        column_types: dict[str, str] | None = None,
        statement_timeout_ms: int | None = None,
        lock_timeout_ms: int | None = None,
    ):
        """
        Args:
            column_types: Cast type per column (key columns included); when
                omitted, types are read from pg_attribute
            statement_timeout_ms: SET LOCAL statement_timeout for each batch
            lock_timeout_ms: SET LOCAL lock_timeout for each batch
        """
        super().__init__(pool, table, key_columns, update_columns)

        for type_name in (column_types or {}).values():
            validate_type_name(type_name)
        if statement_timeout_ms is not None:
            validate_integer_param(statement_timeout_ms, "statement_timeout_ms", min_value=0)
        if lock_timeout_ms is not None:
            validate_integer_param(lock_timeout_ms, "lock_timeout_ms", min_value=0)

        self._column_types: dict[str, str] | None = dict(column_types) if column_types else None
        self.statement_timeout_ms = statement_timeout_ms
        self.lock_timeout_ms = lock_timeout_ms

    def _load_column_types(self, conn: Any) -> dict[str, str]:
        cursor = conn.cursor()
        try:
            cursor.execute(_COLUMN_TYPES_QUERY, (self._table_sql,))
            types = {name: type_name for name, type_name in cursor.fetchall()}
        finally:
            cursor.close()
        # Leave the pooled connection idle
        if not conn.autocommit:
            conn.rollback()

        if not types:
            raise PermanentApplyError(f"Table {self.table} has no columns or does not exist")
        logger.debug(f"Resolved {len(types)} column types for {self.table}")
        return types

    def prepare(self, conn: Any, columns: Sequence[str]) -> None:
        with self._lock:
            if self._column_types is None:
                self._column_types = self._load_column_types(conn)
            known = self._column_types

        missing = [c for c in list(self.key_columns) + list(columns) if c not in known]
        if missing:
            raise PermanentApplyError(
                f"Column(s) {', '.join(missing)} not found in {self.table}"
            )

    def render(self, columns: Sequence[str]) -> tuple[str, str]:
        """
        Statement and execute_values row template for ``columns``.

        Example:
            >>> store.render(["price"])[0]
            'UPDATE "public"."products" AS t SET "price" = d."price" FROM (VALUES %s) AS d("sku", "price") WHERE t."sku" = d."sku"'
        """
        all_columns = list(self.key_columns) + list(columns)
        quoted = [self.quote(c) for c in all_columns]

        assignments = ", ".join(f"{self.quote(c)} = d.{self.quote(c)}" for c in columns)
        join = " AND ".join(f"t.{k} = d.{k}" for k in self._key_sql)
        statement = (
            f"UPDATE {self._table_sql} AS t SET {assignments} "
            f"FROM (VALUES %s) AS d({', '.join(quoted)}) "
            f"WHERE {join}"
        )

        types = self._column_types or {}
        template = "(" + ", ".join(
            f"%s::{types[c]}" if c in types else "%s" for c in all_columns
        ) + ")"
        return statement, template

    def execute_update(self, cursor: Any, batch: Batch, columns: Sequence[str]) -> int:
        if self.statement_timeout_ms is not None:
            cursor.execute(f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}")
        if self.lock_timeout_ms is not None:
            cursor.execute(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}")

        statement, template = self.render(columns)
        values = [self.row_values(row, columns) for row in batch.rows]

        # One page, so the whole batch is one statement and rowcount covers it
        execute_values(cursor, statement, values, template=template, page_size=len(values))
        return max(cursor.rowcount, 0)
