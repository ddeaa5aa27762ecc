"""
Database statement tracing.

Spans follow the OpenTelemetry database semantic conventions (db.system,
db.operation, db.sql.table).
"""

from typing import Any

from opentelemetry import trace

from .context import trace_operation


def trace_database_statement(
    operation: str,
    table: str,
    db_system: str = "unknown",
    **extra_attrs: Any,
) -> Any:
    """
    Context manager for tracing a single database statement.

    Args:
        operation: Statement kind (UPDATE, MERGE, SELECT, ...)
        table: Target table
        db_system: postgresql, mssql, ...

    Example:
        >>> with trace_database_statement("UPDATE", "public.accounts", "postgresql", rows=500):
        ...     cursor.execute(statement)
    """
    return trace_operation(
        f"db.{operation.lower()}",
        kind=trace.SpanKind.CLIENT,
        **{
            "db.operation": operation,
            "db.sql.table": table,
            "db.system": db_system,
            **extra_attrs,
        },
    )
