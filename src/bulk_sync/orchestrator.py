"""
Sync orchestrator: wires source, batcher, worker pool, coordinator and
checkpoint store into runs that can be started, resumed, paused and
cancelled.
"""

import logging
import threading
from typing import Any

from opentelemetry import trace

from utils.tracing import trace_operation

from .batcher import Batcher
from .checkpoint.base import CheckpointStore
from .config import SyncConfig
from .coordinator import CommitCoordinator, ProgressCallback
from .errors import CheckpointNotFoundError, ConfigurationError, RunNotFoundError
from .metrics import RUNS
from .models import CheckpointRecord, RunState, SyncRun
from .sources.base import DeltaSource
from .targets.base import TargetStore
from .workers import ApplyWorkerPool

logger = logging.getLogger(__name__)

# Fields that decide batch boundaries; a resume must reuse the recorded values
_BATCHING_FIELDS = ("batch_size", "key_mode", "partitions")


class SyncOrchestrator:
    """
    Top-level driver of synchronization runs.

    start() and resume() block until the run reaches Completed, Paused or
    Aborted. cancel() and pause() are meant to be called from another
    thread (a signal handler, the progress callback, a supervisor).

    Example:
        >>> orchestrator = SyncOrchestrator(source, target, FileCheckpointStore("./state"))
        >>> run = orchestrator.start(SyncConfig(run_id="prices-2024-06", batch_size=5000))
        >>> run.state, run.total_rows_committed
        (<RunState.COMPLETED: 'completed'>, 1000000)
    """

    def __init__(
        self,
        source: DeltaSource,
        target: TargetStore,
        checkpoint_store: CheckpointStore,
        on_progress: ProgressCallback | None = None,
    ):
        self.source = source
        self.target = target
        self.checkpoint_store = checkpoint_store
        self.on_progress = on_progress

        self._lock = threading.Lock()
        self._coordinators: dict[str, CommitCoordinator | None] = {}
        self._runs: dict[str, SyncRun] = {}

    # -- helpers --------------------------------------------------------

    def _count_source(self) -> int | None:
        try:
            return self.source.count()
        except Exception as e:
            # Only used for progress reporting
            logger.warning(f"Could not count rows of {self.source.describe()}: {e}")
            return None

    def _reserve(self, run_id: str) -> None:
        with self._lock:
            if run_id in self._coordinators:
                raise ConfigurationError(f"Run {run_id!r} is already active")
            # Placeholder until the coordinator exists
            self._coordinators[run_id] = None

    def _execute(self, config: SyncConfig, run: SyncRun, batcher: Batcher) -> SyncRun:
        workers = ApplyWorkerPool(self.target, max_workers=config.worker_concurrency)
        coordinator = CommitCoordinator(
            config, workers, self.checkpoint_store, run, on_progress=self.on_progress
        )
        with self._lock:
            self._coordinators[config.run_id] = coordinator
            self._runs[config.run_id] = run

        try:
            with trace_operation(
                "sync_run",
                kind=trace.SpanKind.INTERNAL,
                run_id=config.run_id,
                batch_size=config.batch_size,
                worker_concurrency=config.worker_concurrency,
                key_mode=config.key_mode.value,
                source=self.source.describe(),
                target=self.target.describe(),
            ) as span:
                coordinator.run(batcher)
                span.set_attribute("state", run.state.value)
        finally:
            workers.shutdown(wait=True)
            with self._lock:
                self._coordinators.pop(config.run_id, None)

        RUNS.labels(state=run.state.value).inc()
        return run

    @staticmethod
    def _resume_config(record: CheckpointRecord, config: SyncConfig | None) -> SyncConfig:
        recorded = {
            "batch_size": record.batch_size,
            "key_mode": record.key_mode,
            "partitions": record.partitions,
        }
        if config is None:
            config = SyncConfig(run_id=record.run_id, **recorded)
        else:
            for name in _BATCHING_FIELDS:
                requested = config.effective_partitions if name == "partitions" else getattr(config, name)
                if requested != recorded[name]:
                    logger.warning(
                        f"Ignoring {name}={requested} for resumed run {record.run_id}; "
                        f"the checkpoint was written with {name}={recorded[name]}"
                    )
            config = config.with_overrides(run_id=record.run_id, **recorded)
        return config.with_overrides(track_committed_keys=record.committed_keys is not None)

    # -- public API -----------------------------------------------------

    def start(self, config: SyncConfig | None = None) -> SyncRun:
        """
        Start a new run and block until it finishes.

        Raises:
            ConfigurationError: If the run id already has a checkpoint or is active
            CheckpointWriteError: If the initial checkpoint cannot be written
        """
        config = config or SyncConfig()
        self._reserve(config.run_id)
        try:
            total = self._count_source()
            self.checkpoint_store.begin_run(config, total_rows_planned=total)
            run = SyncRun(run_id=config.run_id, total_rows_planned=total)
            batcher = Batcher(
                self.source,
                config.batch_size,
                key_mode=config.key_mode,
                partitions=config.effective_partitions,
            )
        except BaseException:
            with self._lock:
                self._coordinators.pop(config.run_id, None)
            raise

        logger.info(
            f"Starting run {config.run_id}: {self.source.describe()} -> {self.target.describe()} "
            f"({total if total is not None else 'unknown'} rows planned)"
        )
        return self._execute(config, run, batcher)

    def resume(self, run_id: str, config: SyncConfig | None = None) -> SyncRun:
        """
        Continue a run from its checkpoint and block until it finishes.

        Sequences at or below the watermark and those committed above it
        are skipped; failed batches are re-driven. Tuning settings (workers,
        retries, backoff) come from ``config``; batching settings always
        come from the checkpoint.

        Raises:
            CheckpointNotFoundError: If the run has no checkpoint
            ConfigurationError: If the run is already active
        """
        self._reserve(run_id)
        try:
            record = self.checkpoint_store.load_checkpoint(run_id)
            config = self._resume_config(record, config)
            self.checkpoint_store.update_state(run_id, RunState.RUNNING)

            total = record.total_rows_planned
            if total is None:
                total = self._count_source()
            run = SyncRun(
                run_id=run_id,
                total_rows_planned=total,
                total_rows_committed=record.rows_committed,
                total_batches_committed=record.last_committed_sequence + 1 + len(record.committed_sequences),
            )

            batcher = Batcher(
                self.source,
                config.batch_size,
                key_mode=config.key_mode,
                partitions=config.effective_partitions,
            )
            batcher.skip_sequences(record.last_committed_sequence, record.committed_sequences)
        except BaseException:
            with self._lock:
                self._coordinators.pop(run_id, None)
            raise

        logger.info(
            f"Resuming run {run_id} from {record.state.value} checkpoint: "
            f"watermark={record.last_committed_sequence}, "
            f"{len(record.committed_sequences)} committed above it, "
            f"{len(record.failed_batches)} failed batches to re-drive"
        )
        return self._execute(config, run, batcher)

    def _coordinator(self, run_id: str) -> CommitCoordinator:
        with self._lock:
            coordinator = self._coordinators.get(run_id)
        if coordinator is None:
            raise RunNotFoundError(f"Run {run_id!r} is not active")
        return coordinator

    def cancel(self, run_id: str) -> None:
        """
        Request cooperative shutdown: nothing new is dispatched, in-flight
        batches finish and the run ends Aborted with its progress kept.

        Raises:
            RunNotFoundError: If the run is not active
        """
        self._coordinator(run_id).cancel()
        logger.info(f"Cancellation requested for run {run_id}")

    def pause(self, run_id: str) -> None:
        """Like cancel(), but the run ends Paused."""
        self._coordinator(run_id).pause()
        logger.info(f"Pause requested for run {run_id}")

    def progress(self, run_id: str) -> dict[str, Any]:
        """
        Progress of a run known to this orchestrator, or read from its checkpoint.

        Raises:
            RunNotFoundError: If the run is unknown everywhere
        """
        with self._lock:
            run = self._runs.get(run_id)
        if run is not None:
            return run.progress()

        try:
            record = self.checkpoint_store.load_checkpoint(run_id)
        except CheckpointNotFoundError:
            raise RunNotFoundError(f"Unknown run {run_id!r}") from None
        return {
            "run_id": record.run_id,
            "rows_committed": record.rows_committed,
            "rows_planned": record.total_rows_planned,
            "batches_failed": len(record.failed_batches),
            "state": record.state.value,
        }

    def active_runs(self) -> list[str]:
        with self._lock:
            return sorted(self._coordinators)
