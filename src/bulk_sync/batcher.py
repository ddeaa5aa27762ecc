"""
Batcher: turns a delta source into numbered, bounded batches.

Sequence numbers are a pure function of the source order, the batch size
and the key mode, so a resumed run rebuilds exactly the batches of the
original run and can drop the ones its checkpoint says are committed.

In unique mode the delta must not repeat a key. Batches are consecutive
slices of ``batch_size`` rows, which lets a resume seek the source straight
past the watermark. The rows behind the watermark are never read again, so
a resumed run only detects duplicates among the rows it does read.

In partitioned mode repeated keys are allowed. Rows are routed to buckets
by a stable hash of their key; a bucket becomes a batch when it is full or
when the next row would repeat a key it already holds. Every occurrence of
a key therefore lands in a later batch than the previous one, and no batch
holds a key twice. When a resume re-drives a batch whose key already
committed in a later batch, that row is superseded and dropped, so the
later value stays in place.
"""

import hashlib
import logging
from collections import deque
from collections.abc import Iterable, Iterator

from .errors import DuplicateKeyError, SourceReadError
from .models import Batch, DeltaRow, KeyMode
from .sources.base import DeltaSource

logger = logging.getLogger(__name__)


def stable_partition(key: object, partitions: int) -> int:
    """
    Bucket index of ``key``, identical across processes.

    The builtin hash() is salted per process for str and bytes, which
    would break batch reproducibility across a resume.
    """
    digest = hashlib.blake2b(repr(key).encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % partitions


class Batcher:
    """
    Pull-based batch producer.

    Example:
        >>> batcher = Batcher(IterableSource([(1, {"v": 1}), (2, {"v": 2}), (3, {"v": 3})]), 2)
        >>> [(b.sequence, b.key_list) for b in batcher]
        [(0, [1, 2]), (1, [3])]
    """

    def __init__(
        self,
        source: DeltaSource,
        batch_size: int,
        key_mode: KeyMode | str = KeyMode.UNIQUE,
        partitions: int = 1,
    ):
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if partitions < 1:
            raise ValueError(f"partitions must be >= 1, got {partitions}")

        self.source = source
        self.batch_size = batch_size
        self.key_mode = KeyMode(key_mode)
        self.partitions = partitions if self.key_mode is KeyMode.PARTITIONED else 1

        self._skip_through = -1
        self._skip_extra: frozenset[int] = frozenset()
        self._rows: Iterator[DeltaRow] | None = None
        self._exhausted = False
        self._next_sequence = 0
        self._rows_read = 0
        self._batches_skipped = 0
        self._rows_superseded = 0

        # unique mode
        self._seen_keys: set = set()

        # partitioned mode
        self._buckets: list[list[DeltaRow]] = [[] for _ in range(self.partitions)]
        self._bucket_keys: list[set] = [set() for _ in range(self.partitions)]
        self._ready: deque[Batch] = deque()
        # key -> latest sequence above the watermark that committed it
        self._committed_above: dict = {}

    @property
    def rows_read(self) -> int:
        """Rows pulled from the source so far (rows skipped by seeking excluded)."""
        return self._rows_read

    @property
    def batches_skipped(self) -> int:
        return self._batches_skipped

    @property
    def rows_superseded(self) -> int:
        """Rows of re-driven batches dropped because a later batch already committed their key."""
        return self._rows_superseded

    def skip_sequences(self, through: int, extra: Iterable[int] = ()) -> None:
        """
        Suppress already-committed batches.

        Args:
            through: Every sequence <= through is skipped (the watermark)
            extra: Individual sequences above ``through`` to skip

        Must be called before the first batch is read.
        """
        if self._rows is not None:
            raise RuntimeError("skip_sequences() must be called before reading starts")
        if through < -1:
            raise ValueError(f"through must be >= -1, got {through}")
        self._skip_through = through
        self._skip_extra = frozenset(seq for seq in extra if seq > through)

    def _is_skipped(self, sequence: int) -> bool:
        return sequence <= self._skip_through or sequence in self._skip_extra

    def _scan_committed_above(self) -> dict:
        """
        Map each key of the batches committed above the watermark to the
        latest such sequence, by replaying the source up to the last of them.
        """
        scan = Batcher(self.source, self.batch_size, key_mode=self.key_mode, partitions=self.partitions)
        last = max(self._skip_extra)
        latest: dict = {}
        for batch in scan:
            if batch.sequence in self._skip_extra:
                for key in batch.keys:
                    latest[key] = batch.sequence
            if batch.sequence >= last:
                break
        logger.info(
            f"Scanned {scan.rows_read} rows of {self.source.describe()}: "
            f"{len(latest)} keys committed above sequence {self._skip_through}"
        )
        return latest

    def _drop_superseded(self, batch: Batch) -> Batch:
        rows = tuple(
            row for row in batch.rows if self._committed_above.get(row.key, -1) < batch.sequence
        )
        dropped = len(batch) - len(rows)
        if not dropped:
            return batch
        self._rows_superseded += dropped
        logger.info(f"Batch {batch.sequence}: {dropped} rows superseded by later committed batches")
        return Batch(sequence=batch.sequence, rows=rows)

    def _open(self) -> None:
        offset = 0
        if self.key_mode is KeyMode.UNIQUE and self._skip_through >= 0:
            # Consecutive slices: committed batches can be skipped without reading them
            offset = (self._skip_through + 1) * self.batch_size
            self._next_sequence = self._skip_through + 1
            self._batches_skipped = self._skip_through + 1

        if self.key_mode is KeyMode.PARTITIONED and self._skip_extra:
            self._committed_above = self._scan_committed_above()

        if offset:
            logger.info(
                f"Resuming {self.source.describe()} at row offset {offset} "
                f"(sequence {self._next_sequence})"
            )
        try:
            self._rows = iter(self.source.read(offset=offset))
        except SourceReadError:
            raise
        except Exception as e:
            raise SourceReadError(f"Failed to open {self.source.describe()}: {e}") from e

    def _pull(self) -> DeltaRow | None:
        try:
            row = next(self._rows)
        except StopIteration:
            self._exhausted = True
            return None
        except SourceReadError:
            raise
        except Exception as e:
            raise SourceReadError(
                f"Failed reading {self.source.describe()} after {self._rows_read} rows: {e}"
            ) from e
        self._rows_read += 1
        return row

    def _emit(self, rows: list[DeltaRow]) -> Batch:
        batch = Batch(sequence=self._next_sequence, rows=tuple(rows))
        self._next_sequence += 1
        return batch

    def _next_unique(self) -> Batch | None:
        rows: list[DeltaRow] = []
        while len(rows) < self.batch_size:
            row = self._pull()
            if row is None:
                break
            if row.key in self._seen_keys:
                raise DuplicateKeyError(row.key, sequence=self._next_sequence)
            self._seen_keys.add(row.key)
            rows.append(row)
        return self._emit(rows) if rows else None

    def _flush_bucket(self, index: int) -> None:
        self._ready.append(self._emit(self._buckets[index]))
        self._buckets[index] = []
        self._bucket_keys[index] = set()

    def _next_partitioned(self) -> Batch | None:
        while not self._ready and not self._exhausted:
            row = self._pull()
            if row is None:
                for index in range(self.partitions):
                    if self._buckets[index]:
                        self._flush_bucket(index)
                break

            index = stable_partition(row.key, self.partitions)
            if row.key in self._bucket_keys[index]:
                self._flush_bucket(index)
            self._buckets[index].append(row)
            self._bucket_keys[index].add(row.key)
            if len(self._buckets[index]) >= self.batch_size:
                self._flush_bucket(index)

        return self._ready.popleft() if self._ready else None

    def next_batch(self) -> Batch | None:
        """
        Next batch to apply, or None once the source is exhausted.

        Raises:
            SourceReadError: The source failed, or repeated a key in unique mode
        """
        if self._rows is None:
            self._open()

        while True:
            if self.key_mode is KeyMode.UNIQUE:
                batch = self._next_unique()
            else:
                batch = self._next_partitioned()

            if batch is None:
                return None
            if self._is_skipped(batch.sequence):
                self._batches_skipped += 1
                logger.debug(f"Skipping committed batch {batch.sequence}")
                continue
            if self._committed_above:
                batch = self._drop_superseded(batch)
            return batch

    def __iter__(self) -> Iterator[Batch]:
        while True:
            batch = self.next_batch()
            if batch is None:
                return
            yield batch
