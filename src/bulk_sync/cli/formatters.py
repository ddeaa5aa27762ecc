"""
Console and JSON rendering of run summaries and checkpoints.
"""

import json
from typing import Any

from ..models import CheckpointRecord

MAX_KEYS_SHOWN = 10


def _keys_preview(keys: list) -> str:
    shown = ", ".join(repr(key) for key in keys[:MAX_KEYS_SHOWN])
    if len(keys) > MAX_KEYS_SHOWN:
        shown += f", ... ({len(keys) - MAX_KEYS_SHOWN} more)"
    return shown


def format_run_console(summary: dict[str, Any]) -> str:
    """Human-readable run summary (input: SyncRun.snapshot())."""
    lines = []
    lines.append("=" * 80)
    lines.append(f"BULK SYNC RUN {summary['run_id']}")
    lines.append("=" * 80)
    lines.append(f"State: {summary['state'].upper()}")
    lines.append(f"Started: {summary['started_at']}")
    lines.append(f"Finished: {summary['finished_at'] or '-'}")
    planned = summary["rows_planned"]
    lines.append(f"Rows Planned: {planned:,}" if planned is not None else "Rows Planned: unknown")
    lines.append(f"Rows Committed: {summary['rows_committed']:,}")
    lines.append(f"Batches Committed: {summary['batches_committed']:,}")
    lines.append(f"Batches Failed: {summary['batches_failed']:,}")
    lines.append("")

    if summary.get("error"):
        lines.append("ERROR")
        lines.append("-" * 80)
        lines.append(summary["error"])
        lines.append("")

    if summary["failed_batches"]:
        lines.append("FAILED BATCHES")
        lines.append("-" * 80)
        for failed in summary["failed_batches"]:
            lines.append(f"Batch {failed['sequence']} ({failed['attempts']} attempts)")
            lines.append(f"  Error: {failed['error_type']}: {failed['error']}")
            lines.append(f"  Keys: {_keys_preview(failed['keys'])}")
            lines.append("")

    lines.append("=" * 80)
    return "\n".join(lines)


def format_checkpoint_console(record: CheckpointRecord) -> str:
    lines = [
        f"Run: {record.run_id}",
        f"State: {record.state.value}",
        f"Watermark: {record.last_committed_sequence}",
        f"Committed above watermark: {sorted(record.committed_sequences) or '-'}",
        f"Batch size: {record.batch_size} ({record.key_mode.value}, partitions={record.partitions})",
        f"Rows committed: {record.rows_committed:,}"
        + (f" of {record.total_rows_planned:,}" if record.total_rows_planned is not None else ""),
        f"Failed batches: {len(record.failed_batches)}",
    ]
    for sequence, failed in sorted(record.failed_batches.items()):
        lines.append(f"  #{sequence}: {failed.error_type}: {failed.error}")
        lines.append(f"    keys: {_keys_preview(failed.keys)}")
    if record.committed_keys is not None:
        lines.append(f"Tracked committed keys: {len(record.committed_keys):,}")
    lines.append(f"Created: {record.created_at.isoformat()}")
    lines.append(f"Updated: {record.timestamp.isoformat()}")
    return "\n".join(lines)


def format_runs_console(records: list[CheckpointRecord]) -> str:
    if not records:
        return "No runs found"
    header = f"{'RUN ID':<32} {'STATE':<10} {'WATERMARK':>10} {'ROWS':>12} {'FAILED':>7}  UPDATED"
    lines = [header, "-" * len(header)]
    for record in records:
        lines.append(
            f"{record.run_id:<32} {record.state.value:<10} {record.last_committed_sequence:>10} "
            f"{record.rows_committed:>12,} {len(record.failed_batches):>7}  {record.timestamp.isoformat()}"
        )
    return "\n".join(lines)


def to_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, default=str)
