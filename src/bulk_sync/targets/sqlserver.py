"""
SQL Server target: ``MERGE ... USING (VALUES ...)`` with an update-only
match clause.

SQL Server accepts at most 2100 bound parameters per statement, so a large
batch is split into several MERGE statements. They all run in the batch's
single transaction, so the batch still commits or rolls back as a whole.
"""

import logging
from collections.abc import Sequence
from typing import Any

from utils.database_types import DatabaseType
from utils.db_pool import BaseConnectionPool
from utils.sql_safety import validate_integer_param

from ..models import Batch
from .base import TargetStore

logger = logging.getLogger(__name__)

MAX_PARAMETERS = 2100
MAX_ROWS_PER_STATEMENT = 1000


class SQLServerTargetStore(TargetStore):
    """
    Example:
        >>> target = SQLServerTargetStore(pool, "dbo.Products", "Sku", ["Price"], maxdop=4)
    """

    db_type = DatabaseType.SQLSERVER
    operation = "MERGE"

    def __init__(
        self,
        pool: BaseConnectionPool,
        table: str,
        key_columns: str | Sequence[str],
        update_columns: Sequence[str] | None = None,
        maxdop: int | None = None,
        lock_timeout_ms: int | None = None,
    ):
        """
        Args:
            maxdop: OPTION (MAXDOP n) hint on every statement
            lock_timeout_ms: SET LOCK_TIMEOUT for the batch (error 1222 is
                retried as a transient failure)
        """
        super().__init__(pool, table, key_columns, update_columns)
        if maxdop is not None:
            validate_integer_param(maxdop, "maxdop", min_value=0)
        if lock_timeout_ms is not None:
            validate_integer_param(lock_timeout_ms, "lock_timeout_ms", min_value=0)
        self.maxdop = maxdop
        self.lock_timeout_ms = lock_timeout_ms

    def rows_per_statement(self, column_count: int) -> int:
        per_row = len(self.key_columns) + column_count
        # Stay strictly below the limit; the driver may add a parameter of its own
        return max(1, min(MAX_ROWS_PER_STATEMENT, (MAX_PARAMETERS - 1) // per_row))

    def render(self, columns: Sequence[str], row_count: int) -> str:
        """MERGE statement for ``row_count`` rows of ``columns``."""
        all_columns = list(self.key_columns) + list(columns)
        row_marker = "(" + ", ".join("?" for _ in all_columns) + ")"
        values = ", ".join(row_marker for _ in range(row_count))
        join = " AND ".join(f"t.{k} = d.{k}" for k in self._key_sql)
        assignments = ", ".join(f"t.{self.quote(c)} = d.{self.quote(c)}" for c in columns)

        statement = (
            f"MERGE {self._table_sql} AS t "
            f"USING (VALUES {values}) AS d ({', '.join(self.quote(c) for c in all_columns)}) "
            f"ON {join} "
            f"WHEN MATCHED THEN UPDATE SET {assignments}"
        )
        if self.maxdop is not None:
            statement += f" OPTION (MAXDOP {int(self.maxdop)})"
        return statement + ";"

    def execute_update(self, cursor: Any, batch: Batch, columns: Sequence[str]) -> int:
        if self.lock_timeout_ms is not None:
            cursor.execute(f"SET LOCK_TIMEOUT {int(self.lock_timeout_ms)}")

        chunk_size = self.rows_per_statement(len(columns))
        rows = batch.rows
        affected = 0

        for start in range(0, len(rows), chunk_size):
            chunk = rows[start:start + chunk_size]
            params = [value for row in chunk for value in self.row_values(row, columns)]
            cursor.execute(self.render(columns, len(chunk)), params)
            affected += max(cursor.rowcount, 0)

        if len(rows) > chunk_size:
            logger.debug(
                f"Batch {batch.sequence} applied in {-(-len(rows) // chunk_size)} statements"
            )
        return affected
