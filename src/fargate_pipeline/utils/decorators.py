"""Timing and retry decorators."""
import functools
import logging
import time
from typing import Any, Callable, Optional, TypeVar, cast

logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])


def log_execution_time(description: Optional[str] = None):
    """Log the wall-clock duration of each call, successful or not.

    Args:
        description: Label for the log line; the function name when omitted
    """
    def decorator(func: F) -> F:
        label = description or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.monotonic()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(f"{label} failed after {time.monotonic() - started:.2f}s: {e}")
                raise
            logger.info(f"{label} took {time.monotonic() - started:.2f}s")
            return result
        return cast(F, wrapper)

    return decorator


def retry(max_attempts: int = 3, delay: float = 1.0, backoff: float = 2.0,
          exceptions: tuple = (Exception,), logger_name: Optional[str] = None,
          sleep: Callable[[float], None] = time.sleep):
    """Retry on ``exceptions`` with exponential backoff.

    Args:
        max_attempts: Total number of calls, including the first one
        delay: Wait before the second call, in seconds
        backoff: Multiplier applied to the wait after every failed call
        exceptions: Exception types that trigger another attempt
        logger_name: Logger for retry messages (this module's when omitted)
        sleep: Blocking wait used between attempts
    """
    retry_logger = logging.getLogger(logger_name) if logger_name else logger

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            wait = delay
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        retry_logger.error(f"{func.__name__} gave up after {max_attempts} attempts: {e}")
                        raise
                    retry_logger.warning(
                        f"{func.__name__} attempt {attempt}/{max_attempts} failed ({e}), "
                        f"next try in {wait:.2f}s"
                    )
                    sleep(wait)
                    wait *= backoff
        return cast(F, wrapper)

    return decorator
