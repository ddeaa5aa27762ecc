"""
Run configuration.

SyncConfig can be built directly, from BULK_SYNC_* environment variables,
or from parsed CLI arguments. Every constructor path goes through
validate(), so a bad value fails before any batch is read.
"""

import argparse
import os
import uuid
from dataclasses import dataclass, field, replace
from typing import Any

from utils.sql_safety import validate_integer_param

from .errors import ConfigurationError
from .models import KeyMode

DEFAULT_BATCH_SIZE = 10_000
DEFAULT_WORKER_CONCURRENCY = 8


def generate_run_id() -> str:
    return f"sync-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class SyncConfig:
    """
    Tunables of one synchronization run.

    Attributes:
        run_id: Identifier of the run and its checkpoint
        batch_size: Maximum rows per batch (B)
        worker_concurrency: Maximum batches applied concurrently (W)
        max_retries: Retries of a transiently failing batch after its first attempt
        backoff_base: Delay in seconds before the first retry
        backoff_max: Upper bound on any retry delay
        jitter: Spread retry delays +/-25%
        lookahead: Batches read ahead of dispatch (default 2 * W)
        key_mode: unique (delta must be key-unique) or partitioned
        partitions: Hash buckets in partitioned mode (default W)
        track_committed_keys: Keep every committed key in the checkpoint
    """

    run_id: str = field(default_factory=generate_run_id)
    batch_size: int = DEFAULT_BATCH_SIZE
    worker_concurrency: int = DEFAULT_WORKER_CONCURRENCY
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    jitter: bool = True
    lookahead: int | None = None
    key_mode: KeyMode = KeyMode.UNIQUE
    partitions: int | None = None
    track_committed_keys: bool = False

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "key_mode", KeyMode(self.key_mode))
        except ValueError:
            raise ConfigurationError(
                f"Invalid key_mode: {self.key_mode!r}. "
                f"Expected one of: {', '.join(m.value for m in KeyMode)}"
            ) from None
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ConfigurationError: If any setting is out of range
        """
        if not self.run_id or not str(self.run_id).strip():
            raise ConfigurationError("run_id cannot be empty")

        try:
            validate_integer_param(self.batch_size, "batch_size", min_value=1)
            validate_integer_param(self.worker_concurrency, "worker_concurrency", min_value=1)
            validate_integer_param(self.max_retries, "max_retries", min_value=0)
            if self.lookahead is not None:
                validate_integer_param(self.lookahead, "lookahead", min_value=1)
            if self.partitions is not None:
                validate_integer_param(self.partitions, "partitions", min_value=1)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        if self.backoff_base < 0 or self.backoff_max < 0:
            raise ConfigurationError("backoff_base and backoff_max must be >= 0")
        if self.backoff_max < self.backoff_base:
            raise ConfigurationError(
                f"backoff_max ({self.backoff_max}) must be >= backoff_base ({self.backoff_base})"
            )

    @property
    def effective_lookahead(self) -> int:
        return self.lookahead or 2 * self.worker_concurrency

    @property
    def effective_partitions(self) -> int:
        if self.key_mode is KeyMode.UNIQUE:
            return 1
        return self.partitions or self.worker_concurrency

    def with_overrides(self, **changes: Any) -> "SyncConfig":
        """Copy with some fields replaced (None values are ignored)."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> "SyncConfig":
        """
        Build a config from environment variables

        Environment variables:
            BULK_SYNC_RUN_ID, BULK_SYNC_BATCH_SIZE, BULK_SYNC_WORKERS,
            BULK_SYNC_MAX_RETRIES, BULK_SYNC_BACKOFF_BASE, BULK_SYNC_BACKOFF_MAX,
            BULK_SYNC_JITTER, BULK_SYNC_LOOKAHEAD, BULK_SYNC_KEY_MODE,
            BULK_SYNC_PARTITIONS, BULK_SYNC_TRACK_KEYS
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        converters = {
            "BULK_SYNC_RUN_ID": ("run_id", str),
            "BULK_SYNC_BATCH_SIZE": ("batch_size", int),
            "BULK_SYNC_WORKERS": ("worker_concurrency", int),
            "BULK_SYNC_MAX_RETRIES": ("max_retries", int),
            "BULK_SYNC_BACKOFF_BASE": ("backoff_base", float),
            "BULK_SYNC_BACKOFF_MAX": ("backoff_max", float),
            "BULK_SYNC_JITTER": ("jitter", _parse_bool),
            "BULK_SYNC_LOOKAHEAD": ("lookahead", int),
            "BULK_SYNC_KEY_MODE": ("key_mode", str),
            "BULK_SYNC_PARTITIONS": ("partitions", int),
            "BULK_SYNC_TRACK_KEYS": ("track_committed_keys", _parse_bool),
        }

        for env_name, (attr, convert) in converters.items():
            raw = env.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                values[attr] = convert(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid {env_name}={raw!r}: {e}") from e

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "SyncConfig":
        """Environment defaults overridden by whatever the CLI set."""
        return cls.from_env(
            run_id=getattr(args, "run_id", None),
            batch_size=getattr(args, "batch_size", None),
            worker_concurrency=getattr(args, "workers", None),
            max_retries=getattr(args, "max_retries", None),
            backoff_base=getattr(args, "backoff_base", None),
            backoff_max=getattr(args, "backoff_max", None),
            key_mode=getattr(args, "key_mode", None),
            partitions=getattr(args, "partitions", None),
            track_committed_keys=getattr(args, "track_keys", None) or None,
        )


def _parse_bool(raw: str) -> bool:
    lowered = raw.strip().lower()
    if lowered in ("true", "1", "yes", "on"):
        return True
    if lowered in ("false", "0", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {raw!r}")
