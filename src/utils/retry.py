"""
Exponential backoff for transient database failures

Provides:
- compute_backoff_delay: the delay schedule shared by every retry path
- is_retryable_db_exception: heuristic transient/permanent classification
- retry_with_backoff / retry_database_operation: decorators for blocking
  calls (checkpoint writes, source page reads)

Usage:
    from utils.retry import retry_database_operation

    @retry_database_operation(max_retries=3, base_delay=0.5)
    def fetch_page(cursor, offset):
        cursor.execute(query, (offset,))
        return cursor.fetchall()
"""

import logging
import random
import time
from functools import wraps
from typing import Any, Callable

logger = logging.getLogger(__name__)


def compute_backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
) -> float:
    """
    Delay before retry number ``attempt`` (1-based).

    ``base_delay * exponential_base ** (attempt - 1)``, capped at
    ``max_delay``. With jitter the delay is spread +/-25% (never below
    0.1s unless the undithered delay itself is smaller).

    Example:
        >>> compute_backoff_delay(3, base_delay=1.0, jitter=False)
        4.0
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)

    if jitter and delay > 0:
        spread = delay * 0.25
        delay = max(min(0.1, delay), delay + random.uniform(-spread, spread))

    return delay


_RETRYABLE_PATTERNS = (
    "connection",
    "timeout",
    "timed out",
    "deadlock",
    "lock wait timeout",
    "could not serialize",
    "server has gone away",
    "connection refused",
    "connection reset",
    "broken pipe",
    "network error",
    "communication link failure",
    "server closed the connection",
)

_RETRYABLE_TYPE_NAMES = (
    "connectionerror",
    "timeouterror",
    "operationalerror",
    "interfaceerror",
    "poolexhaustederror",
)


def is_retryable_db_exception(exception: BaseException) -> bool:
    """
    Determine if a database exception looks transient

    Matches connection loss, timeouts, deadlocks and serialization failures
    by exception type name and message.
    """
    exception_str = str(exception).lower()
    exception_type = type(exception).__name__.lower()

    if exception_type in _RETRYABLE_TYPE_NAMES:
        return True

    return any(
        pattern in exception_str or pattern in exception_type
        for pattern in _RETRYABLE_PATTERNS
    )


def _run_with_retries(
    func: Callable,
    args: tuple,
    kwargs: dict,
    should_retry: Callable[[Exception], bool],
    max_retries: int,
    base_delay: float,
    max_delay: float,
    exponential_base: float,
    jitter: bool,
    on_retry: Callable[[int, Exception, float], None] | None,
) -> Any:
    func_name = getattr(func, "__name__", "function")

    for attempt in range(max_retries + 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if not should_retry(e):
                logger.error(f"Non-retryable error in {func_name}: {type(e).__name__}: {e}")
                raise

            if attempt == max_retries:
                logger.error(
                    f"Max retries ({max_retries}) exceeded for {func_name}: "
                    f"{type(e).__name__}: {e}"
                )
                raise

            delay = compute_backoff_delay(
                attempt + 1,
                base_delay=base_delay,
                max_delay=max_delay,
                exponential_base=exponential_base,
                jitter=jitter,
            )

            logger.warning(
                f"Attempt {attempt + 1}/{max_retries} failed for {func_name}: "
                f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
            )

            if on_retry:
                on_retry(attempt + 1, e, delay)

            time.sleep(delay)

    raise RuntimeError(f"Unexpected exit from retry loop in {func_name}")


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> Callable:
    """
    Decorator that retries a function with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Delay before the first retry in seconds
        max_delay: Upper bound on any single delay
        exponential_base: Growth factor between retries
        jitter: Spread delays +/-25% to avoid synchronized retries
        retryable_exceptions: Exception types to retry (default: all)
        on_retry: Callback(attempt, exception, delay) before each sleep
    """
    def should_retry(exc: Exception) -> bool:
        return retryable_exceptions is None or isinstance(exc, retryable_exceptions)

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return _run_with_retries(
                func, args, kwargs, should_retry,
                max_retries, base_delay, max_delay, exponential_base, jitter, on_retry,
            )
        return wrapper
    return decorator


def retry_database_operation(
    max_retries: int = 3,
    base_delay: float = 1.0,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> Callable:
    """
    Retry only transient database errors (see is_retryable_db_exception).

    Syntax errors and constraint violations fail immediately.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return _run_with_retries(
                func, args, kwargs, is_retryable_db_exception,
                max_retries, base_delay, 60.0, 2.0, True, on_retry,
            )
        return wrapper
    return decorator
