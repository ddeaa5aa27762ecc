"""
Distributed tracing using OpenTelemetry.

Instruments:
- Sync runs and batch applies
- Checkpoint writes
- Connection pool acquisition and database statements

Spans are no-ops until initialize_tracing() installs an exporter.
"""

from .context import add_span_event, trace_operation
from .database import trace_database_statement
from .tracer import get_tracer, initialize_tracing, shutdown_tracing

__all__ = [
    "initialize_tracing",
    "get_tracer",
    "shutdown_tracing",
    "trace_operation",
    "add_span_event",
    "trace_database_statement",
]
