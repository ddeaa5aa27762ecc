"""
Apply worker pool.

Workers run TargetStore.apply_batch on a ThreadPoolExecutor and report an
ApplyResult for every attempt on a single completion queue. Errors are
classified into transient/permanent ApplyErrors and returned as data; a
worker never raises into the coordinator.
"""

import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor

from opentelemetry import trace

from utils.tracing import trace_operation

from .errors import PermanentApplyError, classify_apply_error
from .metrics import APPLY_ATTEMPTS, APPLY_DURATION
from .models import ApplyResult, Batch
from .targets.base import TargetStore

logger = logging.getLogger(__name__)


class ApplyWorkerPool:
    """
    Bounded pool of apply workers.

    ``max_workers`` is the ceiling on concurrent transactions against the
    base table. The connection pool behind the target should allow at least
    as many connections.

    Example:
        >>> with ApplyWorkerPool(target, max_workers=4) as workers:
        ...     workers.submit(batch, attempt=1)
        ...     result = workers.completions.get()
    """

    def __init__(self, target: TargetStore, max_workers: int = 8):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")

        self.target = target
        self.max_workers = max_workers
        self.completions: queue.Queue[ApplyResult] = queue.Queue()

        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="bulk-sync-apply",
        )
        self._active = 0
        self._active_lock = threading.Lock()

        logger.info(f"ApplyWorkerPool initialized: max_workers={max_workers}, target={target.describe()}")

    @property
    def active(self) -> int:
        """Apply attempts currently executing."""
        with self._active_lock:
            return self._active

    def apply(self, batch: Batch, attempt: int | None = None) -> ApplyResult:
        """
        Apply ``batch`` once, synchronously.

        Returns:
            ApplyResult; ``error`` is a TransientApplyError or
            PermanentApplyError when the transaction was rolled back
        """
        attempt = attempt if attempt is not None else batch.attempts
        start = time.monotonic()

        with self._active_lock:
            self._active += 1
        try:
            with trace_operation(
                "apply_batch",
                kind=trace.SpanKind.INTERNAL,
                sequence=batch.sequence,
                attempt=attempt,
                rows=len(batch),
            ) as span:
                rows_affected = self.target.apply_batch(batch)
                span.set_attribute("rows_affected", rows_affected)
        except Exception as e:
            duration = time.monotonic() - start
            error = classify_apply_error(e)
            result_label = "transient" if error.retryable else "permanent"
            APPLY_ATTEMPTS.labels(result=result_label).inc()
            APPLY_DURATION.observe(duration)
            logger.warning(
                f"Batch {batch.sequence} attempt {attempt} failed ({result_label}): {error}"
            )
            return ApplyResult(
                sequence=batch.sequence,
                attempt=attempt,
                error=error,
                duration_seconds=duration,
            )
        finally:
            with self._active_lock:
                self._active -= 1

        duration = time.monotonic() - start
        APPLY_ATTEMPTS.labels(result="success").inc()
        APPLY_DURATION.observe(duration)
        logger.debug(
            f"Batch {batch.sequence} attempt {attempt} committed: "
            f"{rows_affected} rows in {duration:.3f}s"
        )
        return ApplyResult(
            sequence=batch.sequence,
            attempt=attempt,
            rows_affected=rows_affected,
            duration_seconds=duration,
        )

    def _run(self, batch: Batch, attempt: int) -> None:
        try:
            result = self.apply(batch, attempt)
        except BaseException as e:
            # Interpreter-level exit inside a worker: still resolve the attempt
            self.completions.put(ApplyResult(
                sequence=batch.sequence,
                attempt=attempt,
                error=PermanentApplyError(f"Worker interrupted: {type(e).__name__}", cause=e),
            ))
            raise
        self.completions.put(result)

    def submit(self, batch: Batch, attempt: int | None = None) -> Future:
        """Schedule one apply attempt; its ApplyResult arrives on ``completions``."""
        attempt = attempt if attempt is not None else batch.attempts
        return self._executor.submit(self._run, batch, attempt)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        logger.debug("ApplyWorkerPool shut down")

    def __enter__(self) -> "ApplyWorkerPool":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown(wait=True)
