"""
Checkpoint stores: durable per-run progress for resume-after-failure.
"""

from .base import CheckpointStore
from .file_store import FileCheckpointStore
from .postgres import PostgresCheckpointStore

__all__ = [
    "CheckpointStore",
    "FileCheckpointStore",
    "PostgresCheckpointStore",
]
