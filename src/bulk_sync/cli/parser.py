"""
Command-line argument parser configuration.

This module sets up the argument parser for the bulk-sync CLI tool,
defining all commands and their options.
"""

import argparse

from ..models import KeyMode

DB_TYPES = ["postgresql", "sqlserver"]


def _add_connection_arguments(parser: argparse.ArgumentParser, role: str) -> None:
    group = parser.add_argument_group(f"{role} database")
    group.add_argument(f"--{role}-host", help=f"{role.capitalize()} database host")
    group.add_argument(f"--{role}-port", type=int, help=f"{role.capitalize()} database port")
    group.add_argument(f"--{role}-database", help=f"{role.capitalize()} database name")
    group.add_argument(f"--{role}-user", help=f"{role.capitalize()} database username")
    group.add_argument(f"--{role}-password", help=f"{role.capitalize()} database password")
    group.add_argument(
        f"--vault-{role}-path",
        help=f"Vault secret path for {role} credentials (default: database/<type>)",
    )


def _add_checkpoint_arguments(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("checkpoint")
    group.add_argument(
        "--checkpoint-store",
        choices=["file", "postgresql"],
        default="file",
        help="Where checkpoints are kept (default: file). "
             "postgresql uses the target connection, which must be PostgreSQL",
    )
    group.add_argument(
        "--state-dir",
        default="./bulk_sync_state",
        help="Directory of the file checkpoint store (default: ./bulk_sync_state)",
    )
    group.add_argument(
        "--checkpoint-table",
        default="bulk_sync_checkpoints",
        help="Table of the PostgreSQL checkpoint store (default: bulk_sync_checkpoints)",
    )


def _add_sync_arguments(parser: argparse.ArgumentParser, resuming: bool) -> None:
    source = parser.add_argument_group("source")
    source_kind = source.add_mutually_exclusive_group(required=True)
    source_kind.add_argument("--source-csv", help="CSV file holding the delta (with header)")
    source_kind.add_argument("--source-table", help="Table or view holding the delta (schema.table)")
    source.add_argument(
        "--source-type",
        choices=DB_TYPES,
        default="postgresql",
        help="Database type of --source-table (default: postgresql)",
    )
    source.add_argument(
        "--source-order-column",
        help="Column ordering repeated keys of --source-table (a change id or timestamp); "
             "required with --key-mode partitioned",
    )
    source.add_argument("--csv-delimiter", default=",", help="CSV field delimiter (default: ,)")
    source.add_argument(
        "--csv-null",
        default="",
        help="CSV cell text read as NULL (default: empty cell)",
    )

    target = parser.add_argument_group("target")
    target.add_argument("--target-table", required=True, help="Base table to update (schema.table)")
    target.add_argument(
        "--target-type",
        choices=DB_TYPES,
        default="postgresql",
        help="Database type of the target (default: postgresql)",
    )
    target.add_argument(
        "--key-columns",
        required=True,
        help="Comma-separated join key column(s)",
    )
    target.add_argument(
        "--columns",
        help="Comma-separated columns to update (default: every non-key source column)",
    )
    target.add_argument(
        "--column-types",
        help="PostgreSQL casts as col=type pairs, e.g. price=numeric,updated=timestamptz "
             "(default: read from the catalog)",
    )
    target.add_argument("--statement-timeout-ms", type=int, help="PostgreSQL statement_timeout per batch")
    target.add_argument("--lock-timeout-ms", type=int, help="Lock timeout per batch")
    target.add_argument("--maxdop", type=int, help="SQL Server OPTION (MAXDOP n) hint")

    tuning = parser.add_argument_group("tuning")
    tuning.add_argument("--workers", type=int, help="Concurrent batch transactions (default: 8)")
    tuning.add_argument("--max-retries", type=int, help="Retries per transiently failing batch (default: 3)")
    tuning.add_argument("--backoff-base", type=float, help="First retry delay in seconds (default: 1.0)")
    tuning.add_argument("--backoff-max", type=float, help="Retry delay cap in seconds (default: 60)")
    tuning.add_argument(
        "--pool-size",
        type=int,
        help="Connections per database pool (default: workers + 2)",
    )
    if not resuming:
        tuning.add_argument("--run-id", help="Run identifier (default: generated)")
        tuning.add_argument("--batch-size", type=int, help="Rows per batch (default: 10000)")
        tuning.add_argument(
            "--key-mode",
            choices=[mode.value for mode in KeyMode],
            help="unique: delta keys must be unique; partitioned: repeated keys are "
                 "applied in order (default: unique)",
        )
        tuning.add_argument("--partitions", type=int, help="Hash buckets in partitioned mode (default: workers)")
        tuning.add_argument(
            "--track-keys",
            action="store_true",
            help="Record every committed key in the checkpoint",
        )

    parser.add_argument(
        "--use-vault",
        action="store_true",
        help="Fetch credentials from HashiCorp Vault",
    )
    _add_connection_arguments(parser, "source")
    _add_connection_arguments(parser, "target")
    _add_checkpoint_arguments(parser)
    parser.add_argument(
        "--format",
        choices=["console", "json"],
        default="console",
        help="Summary output format (default: console)",
    )
    parser.add_argument("--output", help="Also write the JSON run summary to this file")


def create_parser() -> argparse.ArgumentParser:
    """
    Create and configure the argument parser for the CLI.

    Returns:
        Configured ArgumentParser instance
    """
    parser = argparse.ArgumentParser(
        prog="bulk-sync",
        description="Apply a keyed delta onto a large table in parallel, checkpointed batches",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Apply a CSV delta to a PostgreSQL table
  bulk-sync run --source-csv prices.csv --target-table public.products \\
      --key-columns sku --columns price,currency --batch-size 5000 --workers 4

  # Staging table to SQL Server, credentials from Vault
  bulk-sync run --source-table staging.price_delta --source-type sqlserver \\
      --target-type sqlserver --target-table dbo.Products --key-columns Sku --use-vault

  # Continue an interrupted run (same source and target)
  bulk-sync resume --run-id sync-3f2a9c1d0b7e --source-csv prices.csv \\
      --target-table public.products --key-columns sku

  # Inspect checkpoints
  bulk-sync status --run-id sync-3f2a9c1d0b7e --format json
  bulk-sync list

Exit codes: 0 completed cleanly, 1 completed with failed batches (or paused),
2 aborted or could not start.
        """,
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--log-file", help="Also log to this file (rotated)")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON log records")
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")
    parser.add_argument("--otlp-endpoint", help="Export traces to this OTLP gRPC endpoint")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # ========== Run command ==========
    run_parser = subparsers.add_parser("run", help="Start a new synchronization run")
    _add_sync_arguments(run_parser, resuming=False)

    # ========== Resume command ==========
    resume_parser = subparsers.add_parser("resume", help="Resume a run from its checkpoint")
    resume_parser.add_argument("--run-id", required=True, help="Run to resume")
    _add_sync_arguments(resume_parser, resuming=True)

    # ========== Status command ==========
    status_parser = subparsers.add_parser("status", help="Show the checkpoint of a run")
    status_parser.add_argument("--run-id", required=True, help="Run to inspect")
    status_parser.add_argument(
        "--format",
        choices=["console", "json"],
        default="console",
        help="Output format (default: console)",
    )
    status_parser.add_argument("--use-vault", action="store_true", help="Fetch credentials from HashiCorp Vault")
    _add_connection_arguments(status_parser, "target")
    _add_checkpoint_arguments(status_parser)

    # ========== List command ==========
    list_parser = subparsers.add_parser("list", help="List runs in the checkpoint store")
    list_parser.add_argument(
        "--format",
        choices=["console", "json"],
        default="console",
        help="Output format (default: console)",
    )
    list_parser.add_argument("--use-vault", action="store_true", help="Fetch credentials from HashiCorp Vault")
    _add_connection_arguments(list_parser, "target")
    _add_checkpoint_arguments(list_parser)

    return parser
