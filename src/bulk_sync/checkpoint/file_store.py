"""
JSON-file checkpoint store: one file per run in a state directory.

Writes go to a temporary file in the same directory, are fsynced and then
atomically renamed over the previous checkpoint, so a crash leaves either
the old or the new record on disk, never a torn one.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path

from ..errors import CheckpointError
from ..models import CheckpointRecord
from .base import CheckpointStore, decode_record

logger = logging.getLogger(__name__)

_SUFFIX = ".checkpoint.json"


class FileCheckpointStore(CheckpointStore):
    """
    Example:
        >>> store = FileCheckpointStore("./sync_state")
        >>> store.load_checkpoint("nightly-prices").last_committed_sequence
        41
    """

    store_name = "file"

    def __init__(self, state_dir: str | Path = "./bulk_sync_state"):
        super().__init__()
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Initialized file checkpoint store in {self.state_dir}")

    def _path(self, run_id: str) -> Path:
        # Run ids come from users; keep them to a portable file name
        safe_run_id = re.sub(r"[^A-Za-z0-9_.-]", "_", run_id)
        return self.state_dir / f"{safe_run_id}{_SUFFIX}"

    def _read(self, run_id: str) -> CheckpointRecord | None:
        path = self._path(run_id)
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                payload = json.load(f)
        except json.JSONDecodeError as e:
            raise CheckpointError(f"Corrupt checkpoint file {path}: {e}") from e
        return decode_record(payload, str(path))

    def _write(self, record: CheckpointRecord) -> None:
        path = self._path(record.run_id)
        fd, tmp_name = tempfile.mkstemp(dir=self.state_dir, prefix=".tmp-", suffix=_SUFFIX)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        self._fsync_directory()

    def _fsync_directory(self) -> None:
        # Makes the rename itself durable; directories cannot be opened on Windows
        if os.name != "posix":
            return
        dir_fd = os.open(self.state_dir, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    def _delete(self, run_id: str) -> bool:
        path = self._path(run_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    def _list_run_ids(self) -> list[str]:
        run_ids = []
        for path in sorted(self.state_dir.glob(f"*{_SUFFIX}")):
            if path.name.startswith(".tmp-"):
                continue
            try:
                with open(path, encoding="utf-8") as f:
                    run_ids.append(json.load(f)["run_id"])
            except (OSError, json.JSONDecodeError, KeyError) as e:
                logger.warning(f"Skipping unreadable checkpoint file {path}: {e}")
        return run_ids

    def describe(self) -> str:
        return f"file:{self.state_dir}"
