"""
Unit tests for the apply worker pool
"""

import threading

import pytest

from bulk_sync.errors import PermanentApplyError, TransientApplyError
from bulk_sync.models import Batch
from bulk_sync.workers import ApplyWorkerPool
from tests.fakes import InMemoryTarget, constraint_violation, deadlock, make_rows


def in_flight_batch(sequence, keys):
    batch = Batch(sequence=sequence, rows=make_rows(keys))
    batch.mark_in_flight()
    batch.begin_attempt()
    return batch


class TestApply:
    """Test single synchronous attempts"""

    def test_success_reports_rows_affected(self):
        target = InMemoryTarget(base={1: {"value": None}, 2: {"value": None}})
        with ApplyWorkerPool(target, max_workers=1) as workers:
            result = workers.apply(in_flight_batch(0, [1, 2, 3]))

        assert result.ok
        assert result.sequence == 0
        assert result.attempt == 1
        assert result.rows_affected == 2
        assert target.base[1] == {"value": "value-1"}

    def test_transient_error_returned_not_raised(self):
        target = InMemoryTarget(failures={0: [deadlock()]})
        with ApplyWorkerPool(target, max_workers=1) as workers:
            result = workers.apply(in_flight_batch(0, [1]))

        assert not result.ok
        assert isinstance(result.error, TransientApplyError)
        assert result.error.sqlstate == "40P01"

    def test_permanent_error_returned_not_raised(self):
        target = InMemoryTarget(failures={0: [constraint_violation()]})
        with ApplyWorkerPool(target, max_workers=1) as workers:
            result = workers.apply(in_flight_batch(0, [1]))

        assert isinstance(result.error, PermanentApplyError)

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            ApplyWorkerPool(InMemoryTarget(), max_workers=0)


class TestSubmit:
    """Test asynchronous attempts and the completion queue"""

    def test_results_arrive_on_completion_queue(self):
        target = InMemoryTarget(base={k: {} for k in range(6)})
        with ApplyWorkerPool(target, max_workers=3) as workers:
            for sequence in range(3):
                workers.submit(in_flight_batch(sequence, [sequence * 2, sequence * 2 + 1]))
            results = [workers.completions.get(timeout=5) for _ in range(3)]

        assert sorted(r.sequence for r in results) == [0, 1, 2]
        assert all(r.ok for r in results)

    def test_active_counts_running_attempts(self):
        release = threading.Event()
        started = threading.Event()

        class BlockingTarget(InMemoryTarget):
            def apply_batch(self, batch):
                started.set()
                release.wait(5)
                return 0

        workers = ApplyWorkerPool(BlockingTarget(), max_workers=2)
        try:
            workers.submit(in_flight_batch(0, [1]))
            assert started.wait(5)
            assert workers.active == 1
            release.set()
            assert workers.completions.get(timeout=5).ok
        finally:
            release.set()
            workers.shutdown()
        assert workers.active == 0
