"""
Delta source contract.

A source is a finite, ordered, offset-addressable sequence of DeltaRow.
Reading the same source twice must produce the same order, otherwise a
resumed run cannot reproduce its batch boundaries.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator

from ..models import DeltaRow


class DeltaSource(ABC):
    """Base class for delta readers."""

    @abstractmethod
    def read(self, offset: int = 0) -> Iterator[DeltaRow]:
        """
        Yield rows in stable order, starting at the ``offset``-th row.

        Driver or I/O errors are raised as-is; the Batcher turns them into
        SourceReadError.
        """

    def count(self) -> int | None:
        """Total number of rows, or None when unknown (progress estimation only)."""
        return None

    def describe(self) -> str:
        return self.__class__.__name__
