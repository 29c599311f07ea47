"""
Deep Reader - Database Retry Logic
Exponential backoff retry for database operations
"""

import time
import sqlite3
from typing import TypeVar, Callable
from functools import wraps

import config
from core.logger import log_warning, log_error

T = TypeVar('T')


class DatabaseRetryExhausted(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


def db_retry(
    max_retries: int = config.DB_MAX_RETRIES,
    initial_delay: float = config.DB_RETRY_INITIAL_DELAY,
    backoff_multiplier: float = config.DB_RETRY_BACKOFF_MULTIPLIER,
    max_delay: float = 10.0,
    retryable_errors: tuple = ("locked", "busy", "database is locked")
):
    """
    Decorator for retrying database operations with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        backoff_multiplier: Multiplier for each retry
        max_delay: Maximum delay between retries
        retryable_errors: Error message substrings that trigger retry
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            last_error = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except sqlite3.OperationalError as e:
                    error_msg = str(e).lower()
                    is_retryable = any(err in error_msg for err in retryable_errors)

                    if not is_retryable or attempt >= max_retries:
                        if attempt > 0:
                            log_error(
                                f"Database operation failed after {attempt + 1} attempts: {e}"
                            )
                        raise

                    last_error = e
                    log_warning(
                        f"Database locked (attempt {attempt + 1}/{max_retries + 1}), "
                        f"retrying in {delay:.2f}s..."
                    )
                    time.sleep(delay)
                    delay = min(delay * backoff_multiplier, max_delay)

            raise DatabaseRetryExhausted(
                f"Max retries ({max_retries}) exhausted. Last error: {last_error}"
            )

        return wrapper
    return decorator
