"""
Context managers for span management.

Creates spans and attaches events to the current span without explicit
span references.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace

from .tracer import get_tracer


@contextmanager
def trace_operation(
    operation_name: str,
    kind: trace.SpanKind = trace.SpanKind.INTERNAL,
    **attributes: Any,
) -> Iterator[trace.Span]:
    """
    Context manager for tracing operations.

    Creates a span, adds attributes, records any exception raised inside the
    block and re-raises it.

    Args:
        operation_name: Name of the operation being traced
        kind: Span kind (INTERNAL, CLIENT, ...)
        **attributes: Span attributes (values are stringified)

    Example:
        >>> with trace_operation("apply_batch", run_id="r-1", sequence=3) as span:
        ...     rows = target.apply_batch(batch)
        ...     span.set_attribute("rows_affected", rows)
    """
    tracer = get_tracer()

    with tracer.start_as_current_span(operation_name, kind=kind) as span:
        for key, value in attributes.items():
            span.set_attribute(key, str(value))

        try:
            yield span
        except Exception as e:
            span.set_attribute("error", True)
            span.set_attribute("error.type", type(e).__name__)
            span.record_exception(e)
            raise


def add_span_event(name: str, **attributes: Any) -> None:
    """
    Add an event to the current span.

    Example:
        >>> with trace_operation("sync_run"):
        ...     add_span_event("watermark_advanced", sequence=17)
    """
    current_span = trace.get_current_span()
    if current_span.is_recording():
        current_span.add_event(name, attributes={k: str(v) for k, v in attributes.items()})
