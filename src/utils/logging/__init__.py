"""
Structured logging configuration for the bulk sync engine

Provides JSON-formatted or colored console logging with contextual fields
such as run_id and batch sequence.

Usage:
    import logging
    from utils.logging import setup_logging

    # Setup logging (call once at application startup)
    setup_logging(level="INFO", log_file="/var/log/bulk-sync/sync.log")

    logger = logging.getLogger(__name__)
    logger.info("Batch committed", extra={"run_id": "r-1", "sequence": 42})
"""

from .config import configure_from_env, setup_logging, shutdown_logging
from .formatters import ConsoleFormatter, JSONFormatter
from .handlers import ContextLogger

__all__ = [
    "setup_logging",
    "shutdown_logging",
    "configure_from_env",
    "JSONFormatter",
    "ConsoleFormatter",
    "ContextLogger",
]
