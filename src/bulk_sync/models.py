"""
Data model for bulk synchronization runs.

DeltaRow and Batch describe the work; ApplyResult travels from workers back
to the coordinator; CheckpointRecord is what gets persisted; SyncRun is the
live, caller-visible view of a run.
"""

import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any

from .errors import ApplyError, InvalidTransitionError
from .watermark import Watermark


def utcnow() -> datetime:
    return datetime.now(UTC)


class BatchStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMMITTED = "committed"
    FAILED = "failed"


class RunState(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (RunState.COMPLETED, RunState.ABORTED)


class KeyMode(str, Enum):
    """How the batcher treats repeated keys in the delta."""

    UNIQUE = "unique"
    PARTITIONED = "partitioned"


_BATCH_TRANSITIONS = {
    BatchStatus.PENDING: {BatchStatus.IN_FLIGHT},
    BatchStatus.IN_FLIGHT: {BatchStatus.COMMITTED, BatchStatus.FAILED},
    BatchStatus.COMMITTED: set(),
    BatchStatus.FAILED: set(),
}

_RUN_TRANSITIONS = {
    RunState.RUNNING: {RunState.PAUSED, RunState.COMPLETED, RunState.ABORTED},
    RunState.PAUSED: {RunState.RUNNING, RunState.ABORTED},
    RunState.COMPLETED: set(),
    RunState.ABORTED: set(),
}


@dataclass(frozen=True)
class DeltaRow:
    """
    One keyed row of new column values.

    ``fields`` is copied into a read-only mapping, so a row cannot change
    after the source reader produced it.
    """

    key: Any
    fields: Mapping[str, Any]

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(self.fields)


@dataclass
class Batch:
    """
    A bounded group of delta rows applied as one transaction.

    Retries of a transient failure keep the batch InFlight and bump
    ``attempts``; Committed and Failed are terminal.
    """

    sequence: int
    rows: tuple[DeltaRow, ...]
    status: BatchStatus = BatchStatus.PENDING
    attempts: int = 0
    last_error: ApplyError | None = None

    def __post_init__(self) -> None:
        self.rows = tuple(self.rows)
        self._keys = frozenset(row.key for row in self.rows)

    @property
    def keys(self) -> frozenset:
        return self._keys

    @property
    def key_list(self) -> list:
        """Row keys in batch order."""
        return [row.key for row in self.rows]

    @property
    def columns(self) -> tuple[str, ...]:
        """Union of the rows' columns, in first-seen order."""
        seen: dict[str, None] = {}
        for row in self.rows:
            for column in row.fields:
                seen.setdefault(column, None)
        return tuple(seen)

    def __len__(self) -> int:
        return len(self.rows)

    def _transition(self, target: BatchStatus) -> None:
        if target not in _BATCH_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Batch {self.sequence} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def mark_in_flight(self) -> None:
        self._transition(BatchStatus.IN_FLIGHT)

    def begin_attempt(self) -> int:
        """Count one apply attempt; the batch must already be InFlight."""
        if self.status is not BatchStatus.IN_FLIGHT:
            raise InvalidTransitionError(
                f"Batch {self.sequence} is {self.status.value}, cannot start an apply attempt"
            )
        self.attempts += 1
        return self.attempts

    def mark_committed(self) -> None:
        self._transition(BatchStatus.COMMITTED)

    def mark_failed(self, error: ApplyError) -> None:
        self._transition(BatchStatus.FAILED)
        self.last_error = error


@dataclass
class ApplyResult:
    """Outcome of one apply attempt, posted to the completion queue."""

    sequence: int
    attempt: int
    rows_affected: int = 0
    error: ApplyError | None = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FailedBatch:
    """A batch that ended Failed; its keys can be re-driven by a later run."""

    sequence: int
    keys: list
    error: str
    error_type: str
    attempts: int = 1
    failed_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_batch(cls, batch: Batch, error: ApplyError) -> "FailedBatch":
        return cls(
            sequence=batch.sequence,
            keys=batch.key_list,
            error=str(error),
            error_type=type(error).__name__,
            attempts=batch.attempts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "keys": self.keys,
            "error": self.error,
            "error_type": self.error_type,
            "attempts": self.attempts,
            "failed_at": self.failed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FailedBatch":
        return cls(
            sequence=int(data["sequence"]),
            keys=[_restore_key(key) for key in data["keys"]],
            error=data["error"],
            error_type=data["error_type"],
            attempts=int(data.get("attempts", 1)),
            failed_at=datetime.fromisoformat(data["failed_at"]),
        )


def _restore_key(key: Any) -> Any:
    # Composite keys are tuples in memory and JSON arrays on disk
    return tuple(key) if isinstance(key, list) else key


@dataclass
class CheckpointRecord:
    """
    Durable progress of one sync run.

    ``last_committed_sequence`` is a gap-free watermark (-1 before anything
    commits); ``committed_sequences`` holds commits above it that arrived
    out of order.
    """

    run_id: str
    last_committed_sequence: int = -1
    committed_sequences: set[int] = field(default_factory=set)
    committed_keys: set | None = None
    failed_batches: dict[int, FailedBatch] = field(default_factory=dict)
    state: RunState = RunState.RUNNING
    batch_size: int = 10_000
    key_mode: KeyMode = KeyMode.UNIQUE
    partitions: int = 1
    total_rows_planned: int | None = None
    rows_committed: int = 0
    created_at: datetime = field(default_factory=utcnow)
    timestamp: datetime = field(default_factory=utcnow)

    def watermark(self) -> Watermark:
        return Watermark(self.last_committed_sequence, self.committed_sequences)

    def is_committed(self, sequence: int) -> bool:
        return sequence <= self.last_committed_sequence or sequence in self.committed_sequences

    def apply_commit(self, sequence: int, keys: Iterable | None = None, row_count: int = 0) -> bool:
        """
        Fold one committed batch into the record.

        Returns:
            True if the watermark advanced.
        """
        if self.is_committed(sequence):
            return False

        watermark = self.watermark()
        advanced = watermark.mark(sequence)
        self.last_committed_sequence = watermark.value
        self.committed_sequences = set(watermark.pending)
        self.failed_batches.pop(sequence, None)
        self.rows_committed += row_count
        if keys is not None:
            if self.committed_keys is None:
                self.committed_keys = set()
            self.committed_keys.update(keys)
        self.timestamp = utcnow()
        return advanced

    def apply_failure(self, failed: FailedBatch) -> None:
        self.failed_batches[failed.sequence] = failed
        self.timestamp = utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "last_committed_sequence": self.last_committed_sequence,
            "committed_sequences": sorted(self.committed_sequences),
            "committed_keys": (
                sorted(self.committed_keys, key=repr) if self.committed_keys is not None else None
            ),
            "failed_batches": [fb.to_dict() for _, fb in sorted(self.failed_batches.items())],
            "state": self.state.value,
            "batch_size": self.batch_size,
            "key_mode": self.key_mode.value,
            "partitions": self.partitions,
            "total_rows_planned": self.total_rows_planned,
            "rows_committed": self.rows_committed,
            "created_at": self.created_at.isoformat(),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CheckpointRecord":
        committed_keys = data.get("committed_keys")
        failed = [FailedBatch.from_dict(item) for item in data.get("failed_batches", [])]
        return cls(
            run_id=data["run_id"],
            last_committed_sequence=int(data["last_committed_sequence"]),
            committed_sequences={int(seq) for seq in data.get("committed_sequences", [])},
            committed_keys=(
                {_restore_key(key) for key in committed_keys} if committed_keys is not None else None
            ),
            failed_batches={fb.sequence: fb for fb in failed},
            state=RunState(data.get("state", RunState.RUNNING.value)),
            batch_size=int(data["batch_size"]),
            key_mode=KeyMode(data.get("key_mode", KeyMode.UNIQUE.value)),
            partitions=int(data.get("partitions", 1)),
            total_rows_planned=data.get("total_rows_planned"),
            rows_committed=int(data.get("rows_committed", 0)),
            created_at=datetime.fromisoformat(data["created_at"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class SyncRun:
    """
    Live view of a synchronization run.

    Mutated only by the coordinator thread; other threads read it through
    progress() / snapshot(), which take the lock.
    """

    run_id: str
    started_at: datetime = field(default_factory=utcnow)
    total_rows_planned: int | None = None
    total_rows_committed: int = 0
    total_batches_committed: int = 0
    total_batches_failed: int = 0
    state: RunState = RunState.RUNNING
    failed_batches: list[FailedBatch] = field(default_factory=list)
    finished_at: datetime | None = None
    error: str | None = None
    fatal_error: BaseException | None = field(default=None, repr=False, compare=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_commit(self, rows: int) -> None:
        with self._lock:
            self.total_rows_committed += rows
            self.total_batches_committed += 1

    def record_failure(self, failed: FailedBatch) -> None:
        with self._lock:
            self.failed_batches.append(failed)
            self.total_batches_failed += 1

    def transition(self, target: RunState) -> None:
        with self._lock:
            if target is self.state:
                return
            if target not in _RUN_TRANSITIONS[self.state]:
                raise InvalidTransitionError(
                    f"Run {self.run_id} cannot move from {self.state.value} to {target.value}"
                )
            self.state = target
            if target is not RunState.RUNNING:
                self.finished_at = utcnow()

    def abort(self, error: BaseException) -> None:
        """Record a fatal error; the run will end Aborted."""
        with self._lock:
            if self.fatal_error is None:
                self.fatal_error = error
                self.error = f"{type(error).__name__}: {error}"

    def failed_keys(self) -> list:
        """Keys of every permanently failed batch, for a follow-up run."""
        with self._lock:
            return [key for failed in self.failed_batches for key in failed.keys]

    def progress(self) -> dict[str, Any]:
        with self._lock:
            return {
                "run_id": self.run_id,
                "rows_committed": self.total_rows_committed,
                "rows_planned": self.total_rows_planned,
                "batches_failed": self.total_batches_failed,
                "state": self.state.value,
            }

    def snapshot(self) -> dict[str, Any]:
        """Full JSON-serializable summary (CLI output, reports)."""
        with self._lock:
            return {
                "run_id": self.run_id,
                "state": self.state.value,
                "started_at": self.started_at.isoformat(),
                "finished_at": self.finished_at.isoformat() if self.finished_at else None,
                "rows_planned": self.total_rows_planned,
                "rows_committed": self.total_rows_committed,
                "batches_committed": self.total_batches_committed,
                "batches_failed": self.total_batches_failed,
                "failed_batches": [fb.to_dict() for fb in self.failed_batches],
                "error": self.error,
            }
