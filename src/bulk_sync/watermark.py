"""
Gap-free commit watermark.

Workers finish batches out of order; the watermark only moves to N once
every sequence <= N has committed, so a resume that skips everything at or
below the watermark can never skip an uncommitted batch.
"""

from collections.abc import Iterable


class Watermark:
    """
    Highest sequence below which every batch is committed.

    ``value`` is -1 until sequence 0 commits. Sequences committed above the
    watermark are remembered in ``pending`` until the gap below them closes.
    """

    def __init__(self, value: int = -1, pending: Iterable[int] = ()):
        if value < -1:
            raise ValueError(f"watermark cannot be below -1, got {value}")
        self._value = value
        self._pending: set[int] = {seq for seq in pending if seq > value}
        self._advance()

    @property
    def value(self) -> int:
        return self._value

    @property
    def pending(self) -> frozenset[int]:
        """Committed sequences still separated from the watermark by a gap."""
        return frozenset(self._pending)

    def is_committed(self, sequence: int) -> bool:
        return sequence <= self._value or sequence in self._pending

    def mark(self, sequence: int) -> bool:
        """
        Record ``sequence`` as committed.

        Returns:
            True if the watermark moved.
        """
        if sequence < 0:
            raise ValueError(f"sequence must be >= 0, got {sequence}")
        if sequence <= self._value:
            return False

        self._pending.add(sequence)
        before = self._value
        self._advance()
        return self._value != before

    def _advance(self) -> None:
        while self._value + 1 in self._pending:
            self._value += 1
            self._pending.discard(self._value)

    def __repr__(self) -> str:
        return f"Watermark(value={self._value}, pending={sorted(self._pending)})"
