"""
Delta sources.

Every source yields DeltaRow in a stable order and can start reading at a
row offset, which is how a resumed run skips already-committed batches.
"""

from .base import DeltaSource
from .csv_file import CsvFileSource
from .memory import IterableSource
from .sql import SqlTableSource

__all__ = [
    "DeltaSource",
    "IterableSource",
    "CsvFileSource",
    "SqlTableSource",
]
