"""
Checkpoint store contract.

Every mutating operation is a read-modify-write of the run's
CheckpointRecord followed by a durable write; it returns only after the
write is durable. Backends implement the raw _read/_write/_delete/_list.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any

from opentelemetry import trace

from utils.tracing import trace_operation

from ..config import SyncConfig
from ..errors import CheckpointError, CheckpointNotFoundError, CheckpointWriteError, ConfigurationError
from ..metrics import CHECKPOINT_WRITE_DURATION, CHECKPOINT_WRITE_FAILURES
from ..models import CheckpointRecord, FailedBatch, RunState, utcnow

logger = logging.getLogger(__name__)


class CheckpointStore(ABC):
    """
    Durable record of which batches of a run have committed.

    Records are cached after the first load. The cache is only updated
    after a successful write and is dropped when a write fails, so it never
    runs ahead of what is durable.
    """

    store_name = "base"

    def __init__(self):
        self._lock = threading.RLock()
        self._cache: dict[str, CheckpointRecord] = {}

    # -- backend hooks --------------------------------------------------

    @abstractmethod
    def _read(self, run_id: str) -> CheckpointRecord | None:
        """Stored record, or None if the run has none."""

    @abstractmethod
    def _write(self, record: CheckpointRecord) -> None:
        """Durably replace the stored record."""

    @abstractmethod
    def _delete(self, run_id: str) -> bool:
        """Remove the stored record; True if one existed."""

    @abstractmethod
    def _list_run_ids(self) -> list[str]:
        """Ids of every stored run."""

    # -- internals ------------------------------------------------------

    def _get(self, run_id: str) -> CheckpointRecord:
        record = self._cache.get(run_id)
        if record is None:
            record = self._read(run_id)
            if record is None:
                raise CheckpointNotFoundError(run_id)
            self._cache[run_id] = record
        return record

    def _persist(self, record: CheckpointRecord) -> CheckpointRecord:
        start = time.monotonic()
        with trace_operation(
            "checkpoint_write",
            kind=trace.SpanKind.INTERNAL,
            store=self.store_name,
            run_id=record.run_id,
            watermark=record.last_committed_sequence,
        ):
            try:
                self._write(record)
            except Exception as e:
                self._cache.pop(record.run_id, None)
                CHECKPOINT_WRITE_FAILURES.labels(store=self.store_name).inc()
                logger.error(f"Checkpoint write failed for run {record.run_id}: {e}")
                raise CheckpointWriteError(
                    f"Failed to persist checkpoint for run {record.run_id}: {e}"
                ) from e

        CHECKPOINT_WRITE_DURATION.labels(store=self.store_name).observe(time.monotonic() - start)
        self._cache[record.run_id] = record
        return record

    # -- public API -----------------------------------------------------

    def begin_run(
        self,
        config: SyncConfig,
        total_rows_planned: int | None = None,
        replace: bool = False,
    ) -> CheckpointRecord:
        """
        Create the checkpoint of a new run.

        Raises:
            ConfigurationError: If a checkpoint already exists for config.run_id
                and ``replace`` is False
            CheckpointWriteError: If the record cannot be persisted
        """
        with self._lock:
            if not replace and self._read(config.run_id) is not None:
                raise ConfigurationError(
                    f"Run {config.run_id!r} already has a checkpoint; resume it or pick a new run id"
                )
            record = CheckpointRecord(
                run_id=config.run_id,
                committed_keys=set() if config.track_committed_keys else None,
                batch_size=config.batch_size,
                key_mode=config.key_mode,
                partitions=config.effective_partitions,
                total_rows_planned=total_rows_planned,
            )
            logger.info(f"Created checkpoint for run {config.run_id} in {self.describe()}")
            return self._persist(record)

    def record_commit(
        self,
        run_id: str,
        sequence: int,
        keys: Iterable | None = None,
        row_count: int = 0,
    ) -> CheckpointRecord:
        """
        Record batch ``sequence`` as committed.

        Call only after the batch's transaction committed in the base
        table. Recording an already-committed sequence is a no-op.
        """
        with self._lock:
            record = self._get(run_id)
            if record.is_committed(sequence):
                return record
            record.apply_commit(sequence, keys=keys, row_count=row_count)
            return self._persist(record)

    def record_failure(self, run_id: str, failed: FailedBatch) -> CheckpointRecord:
        with self._lock:
            record = self._get(run_id)
            record.apply_failure(failed)
            return self._persist(record)

    def update_state(
        self,
        run_id: str,
        state: RunState,
        total_rows_planned: int | None = None,
    ) -> CheckpointRecord:
        with self._lock:
            record = self._get(run_id)
            record.state = RunState(state)
            if total_rows_planned is not None:
                record.total_rows_planned = total_rows_planned
            record.timestamp = utcnow()
            return self._persist(record)

    def load_checkpoint(self, run_id: str) -> CheckpointRecord:
        """
        Raises:
            CheckpointNotFoundError: If the run has no checkpoint
        """
        with self._lock:
            record = self._read(run_id)
            if record is None:
                raise CheckpointNotFoundError(run_id)
            self._cache[run_id] = record
            return record

    def delete(self, run_id: str) -> bool:
        with self._lock:
            self._cache.pop(run_id, None)
            deleted = self._delete(run_id)
        if deleted:
            logger.info(f"Deleted checkpoint for run {run_id}")
        return deleted

    def list_runs(self) -> list[CheckpointRecord]:
        """Every stored run, oldest first."""
        records = []
        with self._lock:
            for run_id in self._list_run_ids():
                record = self._read(run_id)
                if record is not None:
                    records.append(record)
        return sorted(records, key=lambda r: r.created_at)

    def describe(self) -> str:
        return self.store_name

    def close(self) -> None:
        """Release backend resources (no-op by default)."""


def decode_record(payload: Any, source: str) -> CheckpointRecord:
    """Build a record from a decoded JSON object, naming ``source`` on failure."""
    try:
        return CheckpointRecord.from_dict(payload)
    except (KeyError, TypeError, ValueError) as e:
        raise CheckpointError(f"Corrupt checkpoint in {source}: {e}") from e
