"""
Unit tests for the Batcher: numbering, key modes, resume skipping
"""

from collections.abc import Iterator

import pytest

from bulk_sync.batcher import Batcher, stable_partition
from bulk_sync.errors import DuplicateKeyError, SourceReadError
from bulk_sync.models import BatchStatus, DeltaRow, KeyMode
from bulk_sync.sources import IterableSource
from bulk_sync.sources.base import DeltaSource
from tests.fakes import make_rows


class RecordingSource(IterableSource):
    """IterableSource that remembers the offsets it was read from."""

    def __init__(self, rows):
        super().__init__(rows)
        self.offsets: list[int] = []

    def read(self, offset: int = 0) -> Iterator[DeltaRow]:
        self.offsets.append(offset)
        return super().read(offset)


class BrokenSource(DeltaSource):
    """Yields ``good`` rows, then fails like a dropped connection."""

    def __init__(self, good: int):
        self.good = good

    def read(self, offset: int = 0) -> Iterator[DeltaRow]:
        for key in range(offset, self.good):
            yield DeltaRow(key=key, fields={"v": key})
        raise ConnectionError("connection reset by peer")


def batches_of(batcher: Batcher) -> list[tuple[int, list]]:
    return [(batch.sequence, batch.key_list) for batch in batcher]


class TestUniqueMode:
    """Test consecutive slicing of a key-unique delta"""

    def test_three_keys_batch_size_two(self):
        """Keys {1,2,3} with B=2 give batch 0 = {1,2}, batch 1 = {3}"""
        batcher = Batcher(IterableSource(make_rows([1, 2, 3])), batch_size=2)
        assert batches_of(batcher) == [(0, [1, 2]), (1, [3])]
        assert batcher.rows_read == 3

    def test_batches_are_pending(self):
        batch = Batcher(IterableSource(make_rows([1])), batch_size=5).next_batch()
        assert batch.status is BatchStatus.PENDING
        assert batch.attempts == 0

    def test_empty_source(self):
        batcher = Batcher(IterableSource([]), batch_size=2)
        assert batcher.next_batch() is None
        assert batcher.next_batch() is None

    def test_duplicate_key_raises(self):
        """A repeated key is reported with the batch it would land in"""
        batcher = Batcher(IterableSource(make_rows([1, 2, 3, 1])), batch_size=2)
        assert batcher.next_batch().sequence == 0
        with pytest.raises(DuplicateKeyError) as exc_info:
            batcher.next_batch()
        assert exc_info.value.key == 1
        assert exc_info.value.sequence == 1

    def test_numbering_is_reproducible(self):
        rows = make_rows(range(10))
        first = batches_of(Batcher(IterableSource(rows), batch_size=3))
        second = batches_of(Batcher(IterableSource(rows), batch_size=3))
        assert first == second
        assert [seq for seq, _ in first] == [0, 1, 2, 3]

    def test_skip_seeks_past_watermark(self):
        """Committed batches are skipped by offset, without reading them"""
        source = RecordingSource(make_rows(range(10)))
        batcher = Batcher(source, batch_size=3)
        batcher.skip_sequences(1)

        assert batches_of(batcher) == [(2, [6, 7, 8]), (3, [9])]
        assert source.offsets == [6]
        assert batcher.batches_skipped == 2
        assert batcher.rows_read == 4

    def test_skip_extra_sequences_above_watermark(self):
        batcher = Batcher(IterableSource(make_rows(range(10))), batch_size=3)
        batcher.skip_sequences(0, extra=[2, 0])
        assert batches_of(batcher) == [(1, [3, 4, 5]), (3, [9])]
        assert batcher.batches_skipped == 2

    def test_skip_after_read_rejected(self):
        batcher = Batcher(IterableSource(make_rows([1, 2])), batch_size=1)
        batcher.next_batch()
        with pytest.raises(RuntimeError):
            batcher.skip_sequences(0)

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            Batcher(IterableSource([]), batch_size=0)
        with pytest.raises(ValueError):
            Batcher(IterableSource([]), batch_size=1).skip_sequences(-2)


class TestSourceFailures:
    """Test that read faults surface as SourceReadError"""

    def test_mid_stream_failure_is_wrapped(self):
        batcher = Batcher(BrokenSource(good=3), batch_size=2)
        assert batcher.next_batch().key_list == [0, 1]
        with pytest.raises(SourceReadError, match="after 3 rows") as exc_info:
            batcher.next_batch()
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_open_failure_is_wrapped(self):
        class Unreadable(DeltaSource):
            def read(self, offset=0):
                raise FileNotFoundError("delta.csv")

        with pytest.raises(SourceReadError, match="Failed to open"):
            Batcher(Unreadable(), batch_size=2).next_batch()


class TestPartitionedMode:
    """Test hash bucketing of a delta with repeated keys"""

    def test_stable_partition(self):
        assert stable_partition("sku-1", 8) == stable_partition("sku-1", 8)
        assert 0 <= stable_partition(("a", 1), 3) < 3
        assert stable_partition(42, 1) == 0

    def test_no_batch_repeats_a_key(self):
        rows = make_rows([1, 2, 1, 3, 1, 2])
        batches = list(Batcher(IterableSource(rows), batch_size=10, key_mode=KeyMode.PARTITIONED, partitions=2))
        for batch in batches:
            assert len(batch.keys) == len(batch)
        assert sum(len(batch) for batch in batches) == len(rows)

    def test_repeated_key_lands_in_later_batch(self):
        """Occurrences of one key appear in increasing sequence order, in delta order"""
        rows = [DeltaRow(key=1, fields={"v": n}) for n in range(4)] + make_rows([2, 3])
        batches = list(Batcher(IterableSource(rows), batch_size=10, key_mode="partitioned", partitions=3))

        values = [
            (batch.sequence, row.fields["v"])
            for batch in batches
            for row in batch.rows
            if row.key == 1
        ]
        assert [v for _, v in sorted(values)] == [0, 1, 2, 3]
        assert len({seq for seq, _ in values}) == 4

    def test_bucket_flushes_when_full(self):
        batches = list(Batcher(IterableSource(make_rows(range(5))), batch_size=2, key_mode="partitioned", partitions=1))
        assert [b.key_list for b in batches] == [[0, 1], [2, 3], [4]]

    def test_resume_replays_and_skips(self):
        """Partitioned resume re-reads from the start and drops committed sequences"""
        rows = make_rows([1, 2, 3, 4, 5, 6])
        full = batches_of(Batcher(IterableSource(rows), batch_size=2, key_mode="partitioned", partitions=2))

        source = RecordingSource(rows)
        resumed = Batcher(source, batch_size=2, key_mode="partitioned", partitions=2)
        resumed.skip_sequences(0, extra=[2])

        assert batches_of(resumed) == [b for b in full if b[0] not in (0, 2)]
        # one pass to collect the keys of sequence 2, one to batch
        assert source.offsets == [0, 0]
        assert resumed.rows_superseded == 0

    def test_resume_drops_rows_committed_later(self):
        """A re-driven batch loses the keys a later committed batch already wrote"""
        rows = [
            DeltaRow(key=1, fields={"v": "old"}),
            DeltaRow(key=2, fields={"v": "only"}),
            DeltaRow(key=1, fields={"v": "new"}),
        ]
        full = list(Batcher(IterableSource(rows), batch_size=10, key_mode="partitioned", partitions=1))
        assert [b.key_list for b in full] == [[1, 2], [1]]

        resumed = Batcher(IterableSource(rows), batch_size=10, key_mode="partitioned", partitions=1)
        resumed.skip_sequences(-1, extra=[1])
        (batch,) = list(resumed)

        assert batch.sequence == 0
        assert [(row.key, row.fields["v"]) for row in batch.rows] == [(2, "only")]
        assert resumed.rows_superseded == 1

    def test_fully_superseded_batch_is_still_emitted(self):
        rows = [DeltaRow(key=1, fields={"v": "old"}), DeltaRow(key=1, fields={"v": "new"})]
        resumed = Batcher(IterableSource(rows), batch_size=10, key_mode="partitioned", partitions=1)
        resumed.skip_sequences(-1, extra=[1])

        (batch,) = list(resumed)

        assert batch.sequence == 0
        assert len(batch) == 0
        assert batch.keys == frozenset()

    def test_earlier_commit_does_not_supersede(self):
        """Only commits at a higher sequence win over a re-driven row"""
        rows = [DeltaRow(key=1, fields={"v": n}) for n in range(3)]
        resumed = Batcher(IterableSource(rows), batch_size=10, key_mode="partitioned", partitions=1)
        resumed.skip_sequences(-1, extra=[1])

        assert [(b.sequence, [r.fields["v"] for r in b.rows]) for b in resumed] == [(0, []), (2, [2])]

    def test_unique_mode_ignores_partitions(self):
        batcher = Batcher(IterableSource(make_rows([1])), batch_size=1, partitions=8)
        assert batcher.partitions == 1
