"""
CSV file delta source.

The first line is a header. One column (or several, for composite keys)
identifies the base row; the remaining selected columns are the values to
write. Cells are strings unless a converter is given for the column.
"""

import csv
import logging
from collections.abc import Callable, Iterator, Sequence
from itertools import islice
from pathlib import Path
from typing import Any

from ..models import DeltaRow
from .base import DeltaSource

logger = logging.getLogger(__name__)


class CsvFileSource(DeltaSource):
    """Reads delta rows from a CSV file, in file order."""

    def __init__(
        self,
        path: str | Path,
        key_columns: str | Sequence[str],
        columns: Sequence[str] | None = None,
        converters: dict[str, Callable[[str], Any]] | None = None,
        null_token: str | None = "",
        delimiter: str = ",",
        encoding: str = "utf-8",
    ):
        """
        Args:
            path: CSV file path
            key_columns: Key column name, or names for a composite key
            columns: Value columns to carry (default: every non-key column)
            converters: Per-column callables applied to non-null cells
                (key columns included)
            null_token: Cell text read as NULL; None disables NULL mapping
            delimiter: Field delimiter
            encoding: File encoding
        """
        self.path = Path(path)
        self.key_columns = [key_columns] if isinstance(key_columns, str) else list(key_columns)
        self.columns = list(columns) if columns is not None else None
        self.converters = converters or {}
        self.null_token = null_token
        self.delimiter = delimiter
        self.encoding = encoding

        if not self.key_columns:
            raise ValueError("At least one key column is required")

    def _convert(self, column: str, raw: str | None) -> Any:
        if raw is None or (self.null_token is not None and raw == self.null_token):
            return None
        converter = self.converters.get(column)
        return converter(raw) if converter else raw

    def _resolve_columns(self, header: Sequence[str]) -> list[str]:
        missing = [name for name in self.key_columns if name not in header]
        if self.columns is not None:
            missing += [name for name in self.columns if name not in header]
            value_columns = list(self.columns)
        else:
            value_columns = [name for name in header if name not in self.key_columns]
        if missing:
            raise ValueError(f"{self.path}: missing columns in header: {', '.join(missing)}")
        return value_columns

    def read(self, offset: int = 0) -> Iterator[DeltaRow]:
        with open(self.path, newline="", encoding=self.encoding) as f:
            reader = csv.DictReader(f, delimiter=self.delimiter)
            value_columns = self._resolve_columns(reader.fieldnames or [])

            for record in islice(reader, offset, None):
                key_values = [self._convert(name, record[name]) for name in self.key_columns]
                if any(value is None for value in key_values):
                    raise ValueError(f"{self.path}:{reader.line_num}: key column is empty")
                key = key_values[0] if len(key_values) == 1 else tuple(key_values)
                yield DeltaRow(
                    key=key,
                    fields={name: self._convert(name, record[name]) for name in value_columns},
                )

    def count(self) -> int:
        with open(self.path, newline="", encoding=self.encoding) as f:
            reader = csv.reader(f, delimiter=self.delimiter)
            next(reader, None)
            total = sum(1 for _ in reader)
        logger.debug(f"{self.path}: {total} delta rows")
        return total

    def describe(self) -> str:
        return f"csv({self.path})"
