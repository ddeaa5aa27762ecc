"""In-memory delta source."""

from collections.abc import Iterable, Iterator, Mapping
from itertools import islice
from typing import Any

from ..models import DeltaRow
from .base import DeltaSource


class IterableSource(DeltaSource):
    """
    Delta held in memory.

    Accepts DeltaRow objects or ``(key, fields)`` pairs; the rows are
    materialized once so every read sees the same order.

    Example:
        >>> source = IterableSource([(1, {"price": 10}), (2, {"price": 12})])
        >>> [row.key for row in source.read(offset=1)]
        [2]
    """

    def __init__(self, rows: Iterable[DeltaRow | tuple[Any, Mapping[str, Any]]]):
        self._rows = [
            row if isinstance(row, DeltaRow) else DeltaRow(key=row[0], fields=row[1])
            for row in rows
        ]

    def read(self, offset: int = 0) -> Iterator[DeltaRow]:
        return islice(iter(self._rows), offset, None)

    def count(self) -> int:
        return len(self._rows)

    def describe(self) -> str:
        return f"memory({len(self._rows)} rows)"
