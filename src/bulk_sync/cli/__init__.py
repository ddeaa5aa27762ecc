"""
Command-line interface for bulk table synchronization.

Available commands:
- run: Start a new synchronization run
- resume: Continue a run from its checkpoint
- status: Show the checkpoint of a run
- list: List runs in the checkpoint store
"""

import logging
import sys

from utils.logging import setup_logging, shutdown_logging
from utils.metrics import ApplicationInfo, MetricsPublisher
from utils.tracing import initialize_tracing, shutdown_tracing

from .. import __version__
from ..errors import BulkSyncError
from .commands import EXIT_ABORTED, cmd_list, cmd_resume, cmd_run, cmd_status
from .credentials import get_connection_config
from .parser import create_parser

logger = logging.getLogger(__name__)

COMMANDS = {
    "run": cmd_run,
    "resume": cmd_resume,
    "status": cmd_status,
    "list": cmd_list,
}


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the bulk-sync CLI"""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        sys.exit(EXIT_ABORTED)

    setup_logging(level=args.log_level, log_file=args.log_file, json_format=args.log_json)

    if args.otlp_endpoint:
        initialize_tracing(service_name="bulk-sync", otlp_endpoint=args.otlp_endpoint)
    if args.metrics_port:
        ApplicationInfo(version=__version__)
        MetricsPublisher(port=args.metrics_port).start()

    try:
        exit_code = COMMANDS[args.command](args)
    except BulkSyncError as e:
        logger.error(f"{type(e).__name__}: {e}")
        exit_code = EXIT_ABORTED
    finally:
        shutdown_tracing()

    shutdown_logging()
    sys.exit(exit_code)


__all__ = [
    "main",
    "create_parser",
    "get_connection_config",
    "cmd_run",
    "cmd_resume",
    "cmd_status",
    "cmd_list",
]


if __name__ == "__main__":
    main()
