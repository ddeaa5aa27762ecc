"""
Bulk table synchronization engine.

Applies a keyed delta onto a large base table in bounded, parallel,
checkpointed batches:

- Batcher: numbered batches from a DeltaSource
- ApplyWorkerPool: one set-based UPDATE/MERGE transaction per batch
- CommitCoordinator: dispatch, retries, key-disjointness, watermark
- CheckpointStore: durable progress for resume-after-failure
- SyncOrchestrator: start / resume / pause / cancel / progress

Usage:
    from bulk_sync import SyncConfig, SyncOrchestrator
    from bulk_sync.checkpoint import FileCheckpointStore
    from bulk_sync.sources import CsvFileSource
    from bulk_sync.targets import PostgresTargetStore

    orchestrator = SyncOrchestrator(
        CsvFileSource("prices.csv", key_columns="sku"),
        PostgresTargetStore(pool, "public.products", key_columns="sku"),
        FileCheckpointStore("./bulk_sync_state"),
    )
    run = orchestrator.start(SyncConfig(batch_size=5000, worker_concurrency=4))
"""

from .batcher import Batcher
from .config import SyncConfig
from .coordinator import CommitCoordinator
from .errors import (
    ApplyError,
    BulkSyncError,
    CheckpointError,
    CheckpointNotFoundError,
    CheckpointWriteError,
    ConfigurationError,
    DuplicateKeyError,
    InvalidTransitionError,
    PermanentApplyError,
    RunNotFoundError,
    SourceExhaustionError,
    SourceReadError,
    TransientApplyError,
)
from .models import (
    ApplyResult,
    Batch,
    BatchStatus,
    CheckpointRecord,
    DeltaRow,
    FailedBatch,
    KeyMode,
    RunState,
    SyncRun,
)
from .orchestrator import SyncOrchestrator
from .watermark import Watermark
from .workers import ApplyWorkerPool

__version__ = "1.0.0"

__all__ = [
    "Batcher",
    "SyncConfig",
    "CommitCoordinator",
    "SyncOrchestrator",
    "ApplyWorkerPool",
    "Watermark",
    "ApplyResult",
    "Batch",
    "BatchStatus",
    "CheckpointRecord",
    "DeltaRow",
    "FailedBatch",
    "KeyMode",
    "RunState",
    "SyncRun",
    "BulkSyncError",
    "ConfigurationError",
    "SourceReadError",
    "SourceExhaustionError",
    "DuplicateKeyError",
    "ApplyError",
    "TransientApplyError",
    "PermanentApplyError",
    "CheckpointError",
    "CheckpointWriteError",
    "CheckpointNotFoundError",
    "InvalidTransitionError",
    "RunNotFoundError",
]
