"""
Target store contract and the shared transaction handling.

A TargetStore applies one batch as one set-based update inside one
transaction. Subclasses only render and execute the dialect's statement;
connection borrowing, the transaction boundary and column validation live
here.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from utils.database_types import DatabaseType
from utils.db_pool import BaseConnectionPool
from utils.sql_safety import quote_identifier, quote_schema_table
from utils.tracing import trace_database_statement

from ..errors import PermanentApplyError
from ..models import Batch

logger = logging.getLogger(__name__)


class TargetStore(ABC):
    """
    Applies batches to one base table.

    Args:
        pool: Connection pool shared by every worker
        table: ``table`` or ``schema.table``
        key_columns: Join column, or columns for a composite key (the row
            key is then a tuple in the same order)
        update_columns: Columns to write; default is the columns of each
            batch, which must then agree across its rows
    """

    db_type: DatabaseType
    operation = "UPDATE"

    def __init__(
        self,
        pool: BaseConnectionPool,
        table: str,
        key_columns: str | Sequence[str],
        update_columns: Sequence[str] | None = None,
    ):
        self.pool = pool
        self.table = table
        self.key_columns = [key_columns] if isinstance(key_columns, str) else list(key_columns)
        self.update_columns = list(update_columns) if update_columns is not None else None

        if not self.key_columns:
            raise ValueError("At least one key column is required")
        overlap = set(self.key_columns) & set(self.update_columns or ())
        if overlap:
            raise ValueError(f"Key columns cannot be updated: {', '.join(sorted(overlap))}")

        self._table_sql = quote_schema_table(table, self.db_type)
        self._key_sql = [quote_identifier(c, self.db_type) for c in self.key_columns]
        for column in self.update_columns or ():
            quote_identifier(column, self.db_type)

        self._lock = threading.Lock()

    # -- column handling ------------------------------------------------

    def columns_for(self, batch: Batch) -> list[str]:
        """
        Columns written for ``batch``.

        Raises:
            PermanentApplyError: If a row lacks a column, carries an
                unexpected one, or a column name is not a valid identifier
        """
        columns = self.update_columns if self.update_columns is not None else list(batch.columns)
        if not columns:
            raise PermanentApplyError(f"Batch {batch.sequence} has no columns to update")

        expected = set(columns)
        for row in batch.rows:
            present = set(row.fields)
            if present != expected:
                missing = sorted(expected - present)
                unexpected = sorted(present - expected)
                raise PermanentApplyError(
                    f"Batch {batch.sequence}: row {row.key!r} column mismatch "
                    f"(missing={missing}, unexpected={unexpected})"
                )

        try:
            for column in columns:
                quote_identifier(column, self.db_type)
        except ValueError as e:
            raise PermanentApplyError(str(e), cause=e) from e
        return columns

    def row_values(self, row: Any, columns: Sequence[str]) -> tuple:
        """Key parts followed by the column values, in statement order."""
        if len(self.key_columns) == 1:
            key_parts: tuple = (row.key,)
        else:
            if not isinstance(row.key, tuple) or len(row.key) != len(self.key_columns):
                raise PermanentApplyError(
                    f"Row key {row.key!r} does not match key columns {self.key_columns}"
                )
            key_parts = row.key
        return key_parts + tuple(row.fields[c] for c in columns)

    def quote(self, identifier: str) -> str:
        return quote_identifier(identifier, self.db_type)

    # -- transaction ----------------------------------------------------

    @contextmanager
    def transaction(self, conn: Any) -> Iterator[Any]:
        """
        Run the block in one transaction on ``conn`` and yield a cursor.

        Commits when the block succeeds; rolls back in full otherwise. The
        connection's autocommit setting is restored either way.
        """
        previous_autocommit = conn.autocommit
        conn.autocommit = False
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except BaseException:
            try:
                conn.rollback()
            except Exception as rollback_error:
                logger.warning(f"Rollback failed on {self.table}: {rollback_error}")
            raise
        finally:
            try:
                cursor.close()
                conn.autocommit = previous_autocommit
            except Exception as e:
                logger.warning(f"Failed to restore connection state: {e}")

    # -- apply ----------------------------------------------------------

    def apply_batch(self, batch: Batch) -> int:
        """
        Apply every row of ``batch`` in one transaction.

        Returns:
            Number of base rows the update touched

        Raises:
            PermanentApplyError: For column mismatches detected before the
                statement runs
            Exception: Driver errors, unchanged; the worker pool classifies them
        """
        columns = self.columns_for(batch)

        with self.pool.acquire() as conn:
            self.prepare(conn, columns)
            with trace_database_statement(
                self.operation,
                self.table,
                self.db_type.otel_system,
                sequence=batch.sequence,
                rows=len(batch),
            ):
                with self.transaction(conn) as cursor:
                    return self.execute_update(cursor, batch, columns)

    def prepare(self, conn: Any, columns: Sequence[str]) -> None:
        """Hook run on the borrowed connection before the transaction opens."""

    @abstractmethod
    def execute_update(self, cursor: Any, batch: Batch, columns: Sequence[str]) -> int:
        """Render and execute the update for ``batch``; return rows affected."""

    def describe(self) -> str:
        return f"{self.db_type.value}:{self.table}"
