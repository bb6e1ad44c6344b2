"""
In-process retry with exponential backoff and jitter.

Covers short transient failures (a dropped GCS connection, a stale pooled
database connection) inside a single stage. Failures that outlast these
retries escape as stage failures and are picked up by the dead letter
queue's much slower schedule.
"""

import logging
import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from google.api_core.exceptions import ServiceUnavailable, TooManyRequests
from psycopg2 import OperationalError

logger = logging.getLogger(__name__)

T = TypeVar('T')


GCS_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    TooManyRequests,      # 429
    ServiceUnavailable,   # 503
    ConnectionError,
    TimeoutError,
)

DATABASE_RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    OperationalError,
)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 32.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Tuple[Type[Exception], ...] = GCS_RETRYABLE_EXCEPTIONS,
    ):
        """
        Args:
            max_attempts: Maximum number of attempts (including the first)
            initial_delay: Delay in seconds before the first retry
            max_delay: Upper bound on any single delay
            exponential_base: Growth factor between retries
            jitter: Scale each delay by a random factor in [0.5, 1.5)
            retryable_exceptions: Exception types worth retrying
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions

    def calculate_delay(self, attempt: int) -> float:
        """
        Delay before retrying after ``attempt`` (0-indexed) failed.

        delay = min(initial_delay * exponential_base ** attempt, max_delay),
        then scaled by jitter when enabled.
        """
        delay = min(self.initial_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.5)
        return delay


def retry_operation(
    operation: Callable[[], T],
    config: Optional[RetryConfig] = None,
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute an operation, retrying retryable failures with backoff.

    Args:
        operation: Zero-argument callable
        config: RetryConfig (defaults if not provided)
        operation_name: Name used in log messages
        sleep: Sleep function, replaceable in tests

    Returns:
        Result from the first successful call

    Raises:
        The last retryable exception once attempts are exhausted, or any
        non-retryable exception immediately

    Example:
        >>> url = retry_operation(
        ...     lambda: client.upload_file(path, key),
        ...     GCS_RETRY_CONFIG,
        ...     "upload qc-report.json",
        ... )
    """
    if config is None:
        config = RetryConfig()

    for attempt in range(config.max_attempts):
        try:
            result = operation()
        except config.retryable_exceptions as e:
            if attempt == config.max_attempts - 1:
                logger.error(f"{operation_name} failed after {config.max_attempts} attempts: {e}")
                raise

            delay = config.calculate_delay(attempt)
            logger.warning(
                f"{operation_name} failed (attempt {attempt + 1}/{config.max_attempts}): {e}. "
                f"Retrying in {delay:.2f}s..."
            )
            sleep(delay)
            continue

        if attempt > 0:
            logger.info(f"{operation_name} succeeded on attempt {attempt + 1}/{config.max_attempts}")
        return result

    raise RuntimeError(f"{operation_name} failed without exception")


# Object storage uploads/downloads
GCS_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    initial_delay=1.0,
    max_delay=16.0,
)

# Acquiring a pooled database connection
DATABASE_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    initial_delay=0.5,
    max_delay=4.0,
    retryable_exceptions=DATABASE_RETRYABLE_EXCEPTIONS,
)
