"""
CLI command implementations.

Each command returns the process exit code:
- 0: run completed and every batch committed
- 1: run completed with failed batches, or was paused
- 2: run aborted (or could not start, see bulk_sync.cli.main)
"""

import argparse
import logging
import signal
import threading
import time
from pathlib import Path
from typing import Any

from utils.database_types import DatabaseType
from utils.db_pool import BaseConnectionPool, create_pool

from ..checkpoint import CheckpointStore, FileCheckpointStore, PostgresCheckpointStore
from ..config import SyncConfig
from ..errors import ConfigurationError, RunNotFoundError
from ..models import KeyMode, RunState, SyncRun
from ..orchestrator import SyncOrchestrator
from ..sources import CsvFileSource, DeltaSource, SqlTableSource
from ..targets import TargetStore, create_target
from .credentials import get_connection_config
from .formatters import format_checkpoint_console, format_run_console, format_runs_console, to_json

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED_BATCHES = 1
EXIT_ABORTED = 2


def exit_code_for(run: SyncRun) -> int:
    if run.state is RunState.ABORTED or run.fatal_error is not None:
        return EXIT_ABORTED
    if run.state is RunState.PAUSED or run.total_batches_failed:
        return EXIT_FAILED_BATCHES
    return EXIT_OK


def _split(value: str | None) -> list[str] | None:
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_column_types(value: str | None) -> dict[str, str] | None:
    """``"price=numeric,ts=timestamptz"`` -> ``{"price": "numeric", "ts": "timestamptz"}``"""
    if not value:
        return None
    types = {}
    for pair in value.split(","):
        column, sep, type_name = pair.partition("=")
        if not sep or not column.strip() or not type_name.strip():
            raise ConfigurationError(f"Invalid --column-types entry: {pair!r} (expected col=type)")
        types[column.strip()] = type_name.strip()
    return types


class ProgressReporter:
    """on_progress callback that logs at most once per ``interval`` seconds."""

    def __init__(self, interval: float = 10.0):
        self.interval = interval
        self._last = 0.0

    def __call__(self, progress: dict[str, Any]) -> None:
        now = time.monotonic()
        if now - self._last < self.interval:
            return
        self._last = now
        planned = progress["rows_planned"]
        if planned:
            pct = 100.0 * progress["rows_committed"] / planned
            done = f"{progress['rows_committed']:,}/{planned:,} rows ({pct:.1f}%)"
        else:
            done = f"{progress['rows_committed']:,} rows"
        logger.info(f"Run {progress['run_id']}: {done} committed, {progress['batches_failed']} batches failed")


class _Resources:
    """Connection pools opened for one command; closed together."""

    def __init__(self, args: argparse.Namespace, pool_size: int):
        self.args = args
        self.pool_size = pool_size
        self.pools: dict[str, BaseConnectionPool] = {}

    def pool(self, role: str, db_type: str) -> BaseConnectionPool:
        if role not in self.pools:
            config = get_connection_config(self.args, role, db_type)
            self.pools[role] = create_pool(
                db_type, config, min_size=1, max_size=self.pool_size, pool_name=f"bulk-sync-{role}"
            )
        return self.pools[role]

    def close(self) -> None:
        for pool in self.pools.values():
            logger.debug(f"Closing connection pool: {pool.get_stats()}")
            pool.close()
        self.pools.clear()


def build_source(args: argparse.Namespace, resources: _Resources) -> DeltaSource:
    key_columns = _split(args.key_columns)
    columns = _split(args.columns)

    if args.source_csv:
        return CsvFileSource(
            args.source_csv,
            key_columns=key_columns,
            columns=columns,
            null_token=args.csv_null,
            delimiter=args.csv_delimiter,
        )

    if len(key_columns) != 1:
        raise ConfigurationError("--source-table supports a single key column")
    if not columns:
        raise ConfigurationError("--columns is required with --source-table")
    order_column = getattr(args, "source_order_column", None)
    if getattr(args, "key_mode", None) == KeyMode.PARTITIONED.value and not order_column:
        raise ConfigurationError(
            "--key-mode partitioned with --source-table needs --source-order-column "
            "to apply repeated keys in a stable order"
        )
    try:
        return SqlTableSource(
            resources.pool("source", args.source_type),
            args.source_table,
            key_column=key_columns[0],
            columns=columns,
            db_type=args.source_type,
            order_column=order_column,
        )
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def build_target(args: argparse.Namespace, resources: _Resources) -> TargetStore:
    dialect = DatabaseType.parse(args.target_type)
    options: dict[str, Any] = {}
    if dialect is DatabaseType.POSTGRESQL:
        options["column_types"] = parse_column_types(args.column_types)
        options["statement_timeout_ms"] = args.statement_timeout_ms
        if args.maxdop is not None:
            logger.warning("--maxdop only applies to SQL Server targets; ignored")
    else:
        options["maxdop"] = args.maxdop
        if args.column_types or args.statement_timeout_ms is not None:
            logger.warning("--column-types and --statement-timeout-ms only apply to PostgreSQL targets; ignored")
    options["lock_timeout_ms"] = args.lock_timeout_ms

    try:
        return create_target(
            dialect,
            resources.pool("target", dialect.value),
            args.target_table,
            key_columns=_split(args.key_columns),
            update_columns=_split(args.columns),
            **options,
        )
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def build_checkpoint_store(args: argparse.Namespace, resources: _Resources) -> CheckpointStore:
    if args.checkpoint_store == "file":
        return FileCheckpointStore(Path(args.state_dir))

    target_type = getattr(args, "target_type", DatabaseType.POSTGRESQL.value)
    if DatabaseType.parse(target_type) is not DatabaseType.POSTGRESQL:
        raise ConfigurationError("--checkpoint-store postgresql requires a PostgreSQL target")
    return PostgresCheckpointStore(resources.pool("target", "postgresql"), table=args.checkpoint_table)


def _install_interrupt_handler(orchestrator: SyncOrchestrator, run_id: str) -> Any:
    if threading.current_thread() is not threading.main_thread():
        return None

    def handle_interrupt(signum: int, frame: Any) -> None:
        try:
            orchestrator.cancel(run_id)
        except RunNotFoundError:
            raise KeyboardInterrupt from None
        logger.warning("Interrupt received: finishing in-flight batches (press Ctrl-C again to force exit)")
        signal.signal(signal.SIGINT, signal.default_int_handler)

    return signal.signal(signal.SIGINT, handle_interrupt)


def _emit_run_summary(args: argparse.Namespace, run: SyncRun) -> None:
    summary = run.snapshot()
    if args.format == "json":
        print(to_json(summary))
    else:
        print(format_run_console(summary))

    if args.output:
        output = Path(args.output)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(to_json(summary), encoding="utf-8")
        logger.info(f"Run summary written to {output}")


def _sync(args: argparse.Namespace, resuming: bool) -> int:
    config = SyncConfig.from_args(args)
    resources = _Resources(args, pool_size=args.pool_size or config.worker_concurrency + 2)
    previous_handler = None

    try:
        store = build_checkpoint_store(args, resources)
        if resuming:
            record = store.load_checkpoint(args.run_id)
            config = config.with_overrides(
                batch_size=record.batch_size,
                key_mode=record.key_mode,
                partitions=record.partitions,
            )

        orchestrator = SyncOrchestrator(
            build_source(args, resources),
            build_target(args, resources),
            store,
            on_progress=ProgressReporter(),
        )
        previous_handler = _install_interrupt_handler(orchestrator, config.run_id)

        if resuming:
            run = orchestrator.resume(config.run_id, config)
        else:
            run = orchestrator.start(config)
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGINT, previous_handler)
        resources.close()

    _emit_run_summary(args, run)
    if run.total_batches_failed:
        logger.warning(
            f"{run.total_batches_failed} batch(es) failed; fix the cause and run "
            f"'bulk-sync resume --run-id {run.run_id}' to re-drive them"
        )
    return exit_code_for(run)


def cmd_run(args: argparse.Namespace) -> int:
    """Start a new synchronization run."""
    logger.info("Starting bulk sync run")
    return _sync(args, resuming=False)


def cmd_resume(args: argparse.Namespace) -> int:
    """Resume a run from its checkpoint."""
    logger.info(f"Resuming bulk sync run {args.run_id}")
    return _sync(args, resuming=True)


def cmd_status(args: argparse.Namespace) -> int:
    """Print the checkpoint of one run."""
    resources = _Resources(args, pool_size=1)
    try:
        record = build_checkpoint_store(args, resources).load_checkpoint(args.run_id)
    finally:
        resources.close()

    if args.format == "json":
        print(to_json(record.to_dict()))
    else:
        print(format_checkpoint_console(record))
    return EXIT_OK


def cmd_list(args: argparse.Namespace) -> int:
    """List every run in the checkpoint store."""
    resources = _Resources(args, pool_size=1)
    try:
        records = build_checkpoint_store(args, resources).list_runs()
    finally:
        resources.close()

    if args.format == "json":
        print(to_json([
            {
                "run_id": r.run_id,
                "state": r.state.value,
                "last_committed_sequence": r.last_committed_sequence,
                "rows_committed": r.rows_committed,
                "rows_planned": r.total_rows_planned,
                "failed_batches": len(r.failed_batches),
                "updated_at": r.timestamp.isoformat(),
            }
            for r in records
        ]))
    else:
        print(format_runs_console(records))
    return EXIT_OK
