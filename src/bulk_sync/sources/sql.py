"""
Delta source backed by a staging table.

Rows are read in key order. The first page is positioned with OFFSET (so a
resume can skip the rows of already-committed batches) and later pages use
keyset pagination, which stays cheap deep into large tables. Each page
borrows a pool connection only for the duration of its query.

A key may repeat in the delta. With an ``order_column`` (a staging row id or
change timestamp) the sort is ``(key, order_column)`` and pages continue
after the last ``(key, order)`` pair, so repeated keys come back in a stable
order. Without one, a page continues at the last key and skips the rows of
that key already returned; every row is still read exactly once, but the
order among rows sharing a key is whatever the database picks.
"""

import logging
from collections.abc import Iterator, Sequence
from typing import Any

from utils.database_types import DatabaseType
from utils.db_pool import BaseConnectionPool
from utils.retry import retry_database_operation
from utils.sql_safety import quote_identifier, quote_schema_table, validate_integer_param
from utils.tracing import trace_database_statement

from ..models import DeltaRow
from .base import DeltaSource

logger = logging.getLogger(__name__)

_NO_KEY = object()


class SqlTableSource(DeltaSource):
    """
    Reads the delta from a table or view.

    Example:
        >>> source = SqlTableSource(
        ...     pool, "staging.price_delta", key_column="sku",
        ...     columns=["price", "currency"], db_type="postgresql",
        ...     order_column="change_id",
        ... )
    """

    def __init__(
        self,
        pool: BaseConnectionPool,
        table: str,
        key_column: str,
        columns: Sequence[str],
        db_type: DatabaseType | str = DatabaseType.POSTGRESQL,
        page_size: int = 5000,
        max_retries: int = 3,
        order_column: str | None = None,
    ):
        validate_integer_param(page_size, "page_size", min_value=1)
        if not columns:
            raise ValueError("At least one value column is required")
        if order_column is not None and order_column in (key_column, *columns):
            raise ValueError(f"order_column {order_column!r} must differ from the key and value columns")

        self.pool = pool
        self.db_type = DatabaseType.parse(db_type)
        self.table = table
        self.key_column = key_column
        self.columns = list(columns)
        self.order_column = order_column
        self.page_size = page_size

        # Identifiers are validated here, once
        self._table_sql = quote_schema_table(table, self.db_type)
        self._key_sql = quote_identifier(key_column, self.db_type)
        selected = [self._key_sql] + [quote_identifier(c, self.db_type) for c in self.columns]
        if order_column is not None:
            self._order_sql = quote_identifier(order_column, self.db_type)
            selected.append(self._order_sql)
            self._sort_sql = f"{self._key_sql}, {self._order_sql}"
        else:
            self._order_sql = None
            self._sort_sql = self._key_sql
        self._select_list = ", ".join(selected)
        self._fetch_page = retry_database_operation(max_retries=max_retries, base_delay=0.5)(
            self._fetch_page_once
        )

    def _first_page_query(self) -> str:
        p = self.db_type.placeholder
        if self.db_type is DatabaseType.POSTGRESQL:
            return (
                f"SELECT {self._select_list} FROM {self._table_sql} "
                f"ORDER BY {self._sort_sql} OFFSET {p} LIMIT {p}"
            )
        return (
            f"SELECT {self._select_list} FROM {self._table_sql} "
            f"ORDER BY {self._sort_sql} OFFSET {p} ROWS FETCH NEXT {p} ROWS ONLY"
        )

    def _next_page_query(self) -> str:
        p = self.db_type.placeholder
        key, order = self._key_sql, self._order_sql
        select = f"SELECT {self._select_list} FROM {self._table_sql}"

        if order is not None:
            if self.db_type is DatabaseType.POSTGRESQL:
                return f"{select} WHERE ({key}, {order}) > ({p}, {p}) ORDER BY {self._sort_sql} LIMIT {p}"
            # No row-value comparison in T-SQL
            return (
                f"SELECT TOP ({p}) {self._select_list} FROM {self._table_sql} "
                f"WHERE {key} > {p} OR ({key} = {p} AND {order} > {p}) ORDER BY {self._sort_sql}"
            )

        # Restart at the last key, past the rows of it already returned
        if self.db_type is DatabaseType.POSTGRESQL:
            return f"{select} WHERE {key} >= {p} ORDER BY {key} OFFSET {p} LIMIT {p}"
        return f"{select} WHERE {key} >= {p} ORDER BY {key} OFFSET {p} ROWS FETCH NEXT {p} ROWS ONLY"

    def _next_page_params(self, last_key: Any, last_order: Any, ties: int) -> tuple:
        if self._order_sql is not None:
            if self.db_type is DatabaseType.POSTGRESQL:
                return (last_key, last_order, self.page_size)
            return (self.page_size, last_key, last_key, last_order)
        return (last_key, ties, self.page_size)

    def _fetch_page_once(self, query: str, params: tuple) -> list[tuple]:
        with self.pool.acquire() as conn:
            cursor = conn.cursor()
            try:
                with trace_database_statement(
                    "SELECT", self.table, self.db_type.otel_system, page_size=self.page_size
                ):
                    cursor.execute(query, params)
                    return list(cursor.fetchall())
            finally:
                cursor.close()

    def read(self, offset: int = 0) -> Iterator[DeltaRow]:
        page = self._fetch_page(self._first_page_query(), (offset, self.page_size))
        value_end = 1 + len(self.columns)
        last_key: Any = _NO_KEY
        last_order: Any = None
        ties = 0

        while page:
            for record in page:
                key = record[0]
                if key == last_key:
                    ties += 1
                else:
                    last_key, ties = key, 1
                if self._order_sql is not None:
                    last_order = record[value_end]
                yield DeltaRow(key=key, fields=dict(zip(self.columns, record[1:value_end])))

            if len(page) < self.page_size:
                return

            page = self._fetch_page(self._next_page_query(), self._next_page_params(last_key, last_order, ties))

    def count(self) -> int:
        rows = self._fetch_page(f"SELECT COUNT(*) FROM {self._table_sql}", ())
        total = int(rows[0][0])
        logger.debug(f"{self.table}: {total} delta rows")
        return total

    def describe(self) -> str:
        return f"{self.db_type.value}:{self.table}"
