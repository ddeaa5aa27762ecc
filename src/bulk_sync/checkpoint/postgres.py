"""
PostgreSQL checkpoint store: one row per run in a checkpoint table.

Each write is a single upsert committed on its own connection, independent
of the batch transactions, so a checkpoint is durable as soon as the call
returns.
"""

import json
import logging
from typing import Any

from utils.database_types import DatabaseType
from utils.db_pool import BaseConnectionPool
from utils.retry import retry_database_operation
from utils.sql_safety import quote_schema_table

from ..models import CheckpointRecord
from .base import CheckpointStore, decode_record

logger = logging.getLogger(__name__)

DEFAULT_TABLE = "bulk_sync_checkpoints"


class PostgresCheckpointStore(CheckpointStore):
    """
    Example:
        >>> store = PostgresCheckpointStore(pool, table="ops.bulk_sync_checkpoints")
        >>> store.list_runs()
        []
    """

    store_name = "postgresql"

    def __init__(
        self,
        pool: BaseConnectionPool,
        table: str = DEFAULT_TABLE,
        create_table: bool = True,
        max_retries: int = 3,
    ):
        super().__init__()
        self.pool = pool
        self.table = table
        self._table_sql = quote_schema_table(table, DatabaseType.POSTGRESQL)
        self._retry = retry_database_operation(max_retries=max_retries, base_delay=0.5)

        if create_table:
            self.ensure_table()

    def _execute(self, query: str, params: tuple = (), fetch: bool = False) -> list[tuple]:
        with self.pool.acquire() as conn:
            cursor = conn.cursor()
            try:
                cursor.execute(query, params)
                rows = list(cursor.fetchall()) if fetch else []
            finally:
                cursor.close()
            if not conn.autocommit:
                conn.commit()
            return rows

    def ensure_table(self) -> None:
        """Create the checkpoint table if it does not exist."""
        self._execute(
            f"CREATE TABLE IF NOT EXISTS {self._table_sql} ("
            "run_id TEXT PRIMARY KEY, "
            "state TEXT NOT NULL, "
            "record JSONB NOT NULL, "
            "created_at TIMESTAMPTZ NOT NULL, "
            "updated_at TIMESTAMPTZ NOT NULL)"
        )
        logger.debug(f"Checkpoint table {self.table} ready")

    def _read(self, run_id: str) -> CheckpointRecord | None:
        rows = self._retry(self._execute)(
            f"SELECT record FROM {self._table_sql} WHERE run_id = %s",
            (run_id,),
            fetch=True,
        )
        if not rows:
            return None
        payload: Any = rows[0][0]
        # psycopg2 decodes jsonb to dict; text comes back as str
        if isinstance(payload, str):
            payload = json.loads(payload)
        return decode_record(payload, f"{self.table}[{run_id}]")

    def _write(self, record: CheckpointRecord) -> None:
        self._retry(self._execute)(
            f"INSERT INTO {self._table_sql} (run_id, state, record, created_at, updated_at) "
            "VALUES (%s, %s, %s::jsonb, %s, %s) "
            "ON CONFLICT (run_id) DO UPDATE SET "
            "state = EXCLUDED.state, record = EXCLUDED.record, updated_at = EXCLUDED.updated_at",
            (
                record.run_id,
                record.state.value,
                json.dumps(record.to_dict(), default=str),
                record.created_at,
                record.timestamp,
            ),
        )

    def _delete(self, run_id: str) -> bool:
        rows = self._execute(
            f"DELETE FROM {self._table_sql} WHERE run_id = %s RETURNING run_id",
            (run_id,),
            fetch=True,
        )
        return bool(rows)

    def _list_run_ids(self) -> list[str]:
        rows = self._execute(
            f"SELECT run_id FROM {self._table_sql} ORDER BY created_at",
            fetch=True,
        )
        return [row[0] for row in rows]

    def describe(self) -> str:
        return f"postgresql:{self.table}"
