"""
Commit coordinator: the single control loop of a sync run.

The coordinator thread is the only one that changes batch status, the run
counters and the checkpoint. Workers hand back ApplyResults through the
completion queue. Per loop iteration the coordinator:

1. tops up the look-ahead buffer from the Batcher,
2. re-dispatches retries whose backoff elapsed,
3. dispatches buffered batches in sequence order while fewer than W are in
   flight and the head batch shares no key with any in-flight batch,
4. blocks on the completion queue (bounded by the next retry due time) and
   resolves one result: checkpoint then Committed, backoff then retry, or
   Failed.

A batch waiting for its retry keeps its in-flight slot and its keys stay
reserved, so no other batch can touch those rows in the meantime.
"""

import heapq
import queue
import threading
import time
from collections import deque
from collections.abc import Callable
from typing import Any

from utils.logging import ContextLogger
from utils.retry import compute_backoff_delay
from utils.tracing import add_span_event

from .batcher import Batcher
from .checkpoint.base import CheckpointStore
from .config import SyncConfig
from .errors import ApplyError, CheckpointWriteError, SourceReadError
from .metrics import BATCH_RETRIES, BATCHES_RESOLVED, IN_FLIGHT_BATCHES, ROWS_COMMITTED, WATERMARK
from .models import ApplyResult, Batch, BatchStatus, FailedBatch, RunState, SyncRun
from .workers import ApplyWorkerPool

ProgressCallback = Callable[[dict[str, Any]], None]

_STOP_CANCEL = "cancel"
_STOP_PAUSE = "pause"
_STOP_FATAL = "fatal"


class CommitCoordinator:
    """
    Drives one run from the first batch to its final state.

    ``run()`` blocks until the source is exhausted and every dispatched
    batch resolved, or until cancel()/pause() or a fatal error stops new
    dispatches and the in-flight batches drained. Fatal errors
    (SourceReadError, CheckpointWriteError) are recorded on the SyncRun,
    which ends Aborted; run() does not raise them.
    """

    def __init__(
        self,
        config: SyncConfig,
        workers: ApplyWorkerPool,
        checkpoint_store: CheckpointStore,
        run: SyncRun,
        on_progress: ProgressCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.workers = workers
        self.checkpoint_store = checkpoint_store
        self.sync_run = run
        self.on_progress = on_progress
        self._clock = clock

        self._cancel_requested = threading.Event()
        self._pause_requested = threading.Event()

        self._pending: deque[Batch] = deque()
        self._in_flight: dict[int, Batch] = {}
        self._reserved_keys: set = set()
        self._retry_heap: list[tuple[float, int]] = []
        self._source_done = False
        self._stopping: str | None = None

        self.log = ContextLogger(__name__, run_id=run.run_id)

    # -- control --------------------------------------------------------

    def cancel(self) -> None:
        """Stop dispatching; in-flight batches finish and the run ends Aborted."""
        self._cancel_requested.set()

    def pause(self) -> None:
        """Stop dispatching; in-flight batches finish and the run ends Paused."""
        self._pause_requested.set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # -- bookkeeping ----------------------------------------------------

    def _fatal(self, error: BaseException) -> None:
        self.sync_run.abort(error)
        if self._stopping != _STOP_FATAL:
            self.log.error(
                f"Fatal error, draining {len(self._in_flight)} in-flight batches: {error}",
                error_type=type(error).__name__,
            )
        self._stopping = _STOP_FATAL
        self._abandon_retries()

    def _abandon_retries(self) -> None:
        # Not committed, not failed: a resume re-drives them
        while self._retry_heap:
            _, sequence = heapq.heappop(self._retry_heap)
            self._release(self._in_flight[sequence])

    def _release(self, batch: Batch) -> None:
        self._in_flight.pop(batch.sequence, None)
        self._reserved_keys.difference_update(batch.keys)
        IN_FLIGHT_BATCHES.labels(run_id=self.sync_run.run_id).set(len(self._in_flight))

    def _check_stop_requests(self) -> None:
        if self._stopping is not None:
            return
        if self._cancel_requested.is_set():
            self._stopping = _STOP_CANCEL
        elif self._pause_requested.is_set():
            self._stopping = _STOP_PAUSE
        else:
            return
        self.log.info(
            f"{self._stopping.capitalize()} requested; waiting for "
            f"{len(self._in_flight)} in-flight batches"
        )

    def _notify_progress(self) -> None:
        if self.on_progress is None:
            return
        try:
            self.on_progress(self.sync_run.progress())
        except Exception as e:
            self.log.warning(f"Progress callback failed: {e}", exc_info=True)

    # -- loop steps -----------------------------------------------------

    def _fill(self, batcher: Batcher) -> None:
        while not self._source_done and len(self._pending) < self.config.effective_lookahead:
            try:
                batch = batcher.next_batch()
            except SourceReadError as e:
                self._fatal(e)
                return
            if batch is None:
                self._source_done = True
                self.log.debug(f"Source exhausted after {batcher.rows_read} rows")
                return
            self._pending.append(batch)

    def _dispatch(self, batch: Batch) -> None:
        if batch.status is BatchStatus.PENDING:
            batch.mark_in_flight()
        attempt = batch.begin_attempt()
        self.workers.submit(batch, attempt)

    def _dispatch_due_retries(self) -> None:
        now = self._clock()
        while self._retry_heap and self._retry_heap[0][0] <= now:
            _, sequence = heapq.heappop(self._retry_heap)
            batch = self._in_flight[sequence]
            BATCH_RETRIES.inc()
            self.log.info(f"Retrying batch {sequence} (attempt {batch.attempts + 1})", sequence=sequence)
            self._dispatch(batch)

    def _dispatch_new(self) -> None:
        while self._pending and len(self._in_flight) < self.config.worker_concurrency:
            head = self._pending[0]
            if not self._reserved_keys.isdisjoint(head.keys):
                # Head-of-line: later batches wait so a repeated key keeps its order
                return
            self._pending.popleft()
            self._in_flight[head.sequence] = head
            if not head.rows:
                # Every row was superseded; only the checkpoint needs it
                head.mark_in_flight()
                self._on_success(head, ApplyResult(sequence=head.sequence, attempt=0))
                if self._stopping is not None:
                    break
                continue
            self._reserved_keys.update(head.keys)
            self._dispatch(head)
        IN_FLIGHT_BATCHES.labels(run_id=self.sync_run.run_id).set(len(self._in_flight))

    def _next_timeout(self) -> float | None:
        if not self._retry_heap:
            return None
        return max(0.0, self._retry_heap[0][0] - self._clock())

    # -- result handling ------------------------------------------------

    def _on_success(self, batch: Batch, result: ApplyResult) -> None:
        keys = batch.key_list if self.config.track_committed_keys else None
        try:
            record = self.checkpoint_store.record_commit(
                self.sync_run.run_id, batch.sequence, keys=keys, row_count=len(batch)
            )
        except CheckpointWriteError as e:
            # Applied but not recorded: the batch is re-applied on resume
            self._release(batch)
            self._fatal(e)
            return

        batch.mark_committed()
        self._release(batch)
        self.sync_run.record_commit(len(batch))
        BATCHES_RESOLVED.labels(outcome="committed").inc()
        ROWS_COMMITTED.inc(len(batch))
        WATERMARK.labels(run_id=self.sync_run.run_id).set(record.last_committed_sequence)
        add_span_event("batch_committed", sequence=batch.sequence, watermark=record.last_committed_sequence)
        self.log.debug(
            f"Batch {batch.sequence} committed ({len(batch)} rows, "
            f"{result.rows_affected} affected, attempt {result.attempt})",
            sequence=batch.sequence,
            watermark=record.last_committed_sequence,
        )
        self._notify_progress()

    def _on_failure(self, batch: Batch, error: ApplyError) -> None:
        batch.mark_failed(error)
        self._release(batch)
        failed = FailedBatch.from_batch(batch, error)
        self.sync_run.record_failure(failed)
        BATCHES_RESOLVED.labels(outcome="failed").inc()
        self.log.error(
            f"Batch {batch.sequence} failed after {batch.attempts} attempt(s): {error}",
            sequence=batch.sequence,
            error_type=type(error).__name__,
        )
        try:
            self.checkpoint_store.record_failure(self.sync_run.run_id, failed)
        except CheckpointWriteError as e:
            self._fatal(e)
        self._notify_progress()

    def _schedule_retry(self, batch: Batch, error: ApplyError) -> None:
        delay = compute_backoff_delay(
            batch.attempts,
            base_delay=self.config.backoff_base,
            max_delay=self.config.backoff_max,
            jitter=self.config.jitter,
        )
        delay = min(delay, self.config.backoff_max)
        heapq.heappush(self._retry_heap, (self._clock() + delay, batch.sequence))
        self.log.warning(
            f"Batch {batch.sequence} attempt {batch.attempts} failed transiently, "
            f"retrying in {delay:.2f}s: {error}",
            sequence=batch.sequence,
        )

    def _handle(self, result: ApplyResult) -> None:
        batch = self._in_flight.get(result.sequence)
        if batch is None:
            self.log.warning(f"Ignoring result for unknown batch {result.sequence}")
            return

        if result.ok:
            self._on_success(batch, result)
            return

        error = result.error
        retries_used = batch.attempts - 1
        if error.retryable and retries_used < self.config.max_retries:
            if self._stopping == _STOP_FATAL:
                self._release(batch)
                return
            self._schedule_retry(batch, error)
            return

        self._on_failure(batch, error)

    # -- main loop ------------------------------------------------------

    def run(self, batcher: Batcher) -> SyncRun:
        """
        Drive ``batcher`` to completion.

        Returns:
            The SyncRun in its final state: Completed, Paused or Aborted
        """
        self.log.info(
            f"Coordinator started: W={self.config.worker_concurrency}, "
            f"B={self.config.batch_size}, lookahead={self.config.effective_lookahead}, "
            f"key_mode={self.config.key_mode.value}"
        )

        while True:
            self._check_stop_requests()

            if self._stopping is None:
                self._fill(batcher)
            if self._stopping != _STOP_FATAL:
                self._dispatch_due_retries()
            if self._stopping is None:
                self._dispatch_new()

            if not self._in_flight:
                if self._stopping is not None or (self._source_done and not self._pending):
                    break
                continue

            try:
                result = self.workers.completions.get(timeout=self._next_timeout())
            except queue.Empty:
                continue
            self._handle(result)

        return self._finish()

    def _finish(self) -> SyncRun:
        if self.sync_run.fatal_error is not None or self._stopping == _STOP_CANCEL:
            final_state = RunState.ABORTED
        elif self._stopping == _STOP_PAUSE:
            final_state = RunState.PAUSED
        else:
            final_state = RunState.COMPLETED

        # The durable state is written first; a run is never reported in a state it could not save
        try:
            self.checkpoint_store.update_state(self.sync_run.run_id, final_state)
        except CheckpointWriteError as e:
            if final_state is not RunState.ABORTED:
                self.log.error(f"Could not save final state {final_state.value}, aborting run: {e}")
            self.sync_run.abort(e)
            final_state = RunState.ABORTED

        self.sync_run.transition(final_state)
        IN_FLIGHT_BATCHES.labels(run_id=self.sync_run.run_id).set(0)

        summary = self.sync_run.progress()
        self.log.info(
            f"Run {final_state.value}: {self.sync_run.total_batches_committed} batches committed "
            f"({summary['rows_committed']} rows), {summary['batches_failed']} failed",
            state=final_state.value,
        )
        return self.sync_run
