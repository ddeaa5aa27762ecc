"""
Error taxonomy for bulk synchronization runs.

Only SourceReadError and CheckpointWriteError abort a run. ApplyError
subclasses are produced by the worker pool and handed to the coordinator
as data; they never escape a worker thread.
"""

from typing import Any

from utils.db_pool import PoolExhaustedError
from utils.retry import is_retryable_db_exception


class BulkSyncError(Exception):
    """Base exception for the bulk sync engine."""


class ConfigurationError(BulkSyncError):
    """Invalid SyncConfig or CLI settings."""


class SourceReadError(BulkSyncError):
    """Reading the delta failed; fatal to the run."""


# Name used by the Batcher contract for read faults
SourceExhaustionError = SourceReadError


class DuplicateKeyError(SourceReadError):
    """The delta repeats a key while key-uniqueness is required."""

    def __init__(self, key: Any, sequence: int | None = None):
        self.key = key
        self.sequence = sequence
        where = f" (batch {sequence})" if sequence is not None else ""
        super().__init__(f"Duplicate delta key {key!r}{where}; the delta must be key-unique")


class ApplyError(BulkSyncError):
    """Applying one batch to the base table failed; the transaction was rolled back."""

    retryable: bool = False

    def __init__(self, message: str, cause: BaseException | None = None, sqlstate: str | None = None):
        super().__init__(message)
        self.cause = cause
        self.sqlstate = sqlstate


class TransientApplyError(ApplyError):
    """Deadlock, timeout, serialization failure or connection loss; retried."""

    retryable = True


class PermanentApplyError(ApplyError):
    """Constraint violation, type mismatch or bad input; not retried."""

    retryable = False


class CheckpointError(BulkSyncError):
    """Base for checkpoint store failures."""


class CheckpointWriteError(CheckpointError):
    """A checkpoint could not be persisted; fatal to the run."""


class CheckpointNotFoundError(CheckpointError):
    """No checkpoint exists for the requested run."""

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"No checkpoint found for run {run_id!r}")


class InvalidTransitionError(BulkSyncError):
    """A batch or run was moved to a state its lifecycle does not allow."""


class RunNotFoundError(BulkSyncError):
    """The orchestrator has no active run with that id."""


# SQLSTATE classes/codes that are worth retrying.
# 08: connection exception, 40001: serialization failure, 40P01: deadlock,
# 55P03: lock not available, 57014: query canceled (statement_timeout),
# 57P01: admin shutdown, 53300: too many connections, HYT00/HYT01: ODBC timeouts,
# 1205/1222 surface as 40001/HYT00 through pyodbc.
_TRANSIENT_SQLSTATE_PREFIXES = ("08",)
_TRANSIENT_SQLSTATES = frozenset({
    "40001", "40P01", "55P03", "57014", "57P01", "57P02", "57P03", "53300",
    "HYT00", "HYT01",
})
# 22: data exception, 23: integrity constraint violation, 42: syntax/access rule
_PERMANENT_SQLSTATE_PREFIXES = ("22", "23", "42", "44")


def _extract_sqlstate(exc: BaseException) -> str | None:
    # psycopg2 exposes pgcode; pyodbc puts the SQLSTATE in args[0]
    pgcode = getattr(exc, "pgcode", None)
    if pgcode:
        return str(pgcode)

    args = getattr(exc, "args", ())
    if args and isinstance(args[0], str) and len(args[0]) == 5 and args[0].isalnum():
        return args[0]
    return None


def classify_apply_error(exc: BaseException) -> ApplyError:
    """
    Map an exception raised while applying a batch to an ApplyError.

    SQLSTATE decides when the driver provides one; otherwise the message
    heuristics in utils.retry decide. Unknown errors are permanent so a
    poisoned batch cannot retry forever.
    """
    if isinstance(exc, ApplyError):
        return exc

    message = f"{type(exc).__name__}: {exc}"

    if isinstance(exc, PoolExhaustedError):
        return TransientApplyError(message, cause=exc)

    sqlstate = _extract_sqlstate(exc)
    if sqlstate:
        if sqlstate in _TRANSIENT_SQLSTATES or sqlstate.startswith(_TRANSIENT_SQLSTATE_PREFIXES):
            return TransientApplyError(message, cause=exc, sqlstate=sqlstate)
        if sqlstate.startswith(_PERMANENT_SQLSTATE_PREFIXES):
            return PermanentApplyError(message, cause=exc, sqlstate=sqlstate)

    if is_retryable_db_exception(exc):
        return TransientApplyError(message, cause=exc, sqlstate=sqlstate)

    return PermanentApplyError(message, cause=exc, sqlstate=sqlstate)
