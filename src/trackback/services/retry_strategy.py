"""
Retry strategy with exponential backoff for item store access.

Item store failures are treated as transient and retried by the caller of the
candidate generator. Lookups never fabricate item data on failure.
"""

import random
import time
from typing import Any, Callable

from loguru import logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_seconds: float = 0.5,
        max_delay_seconds: float = 10.0,
        exponential_base: int = 2,
        jitter: bool = True,
    ):
        """Initialize retry configuration.

        Args:
            max_retries: Maximum number of retry attempts
            base_delay_seconds: Initial delay before first retry
            max_delay_seconds: Maximum delay between retries
            exponential_base: Base for exponential backoff (2 = double each time)
            jitter: Add randomness to prevent thundering herd
        """
        self.max_retries = max_retries
        self.base_delay = base_delay_seconds
        self.max_delay = max_delay_seconds
        self.exponential_base = exponential_base
        self.jitter = jitter


class RetryableError(Exception):
    """Base class for errors that should trigger retry."""

    pass


class NonRetryableError(Exception):
    """Base class for errors that should NOT trigger retry."""

    pass


class RetryStrategy:
    """Handle retries with exponential backoff."""

    # Retryable error patterns (sqlite3.OperationalError messages and I/O failures)
    RETRYABLE_PATTERNS = [
        "database is locked",
        "database table is locked",
        "disk i/o error",
        "unable to open database",
        "timeout",
        "timed out",
        "connection reset",
        "connection refused",
        "temporarily unavailable",
    ]

    # Non-retryable error patterns
    NON_RETRYABLE_PATTERNS = [
        "not found",
        "constraint failed",
        "no such table",
        "malformed",
    ]

    def __init__(
        self,
        config: RetryConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize retry strategy.

        Args:
            config: Retry configuration (uses defaults if not provided)
            sleep: Sleep function used between attempts
        """
        self.config = config or RetryConfig()
        self._sleep = sleep
        logger.debug(
            f"Initialized retry strategy: max_retries={self.config.max_retries}, "
            f"base_delay={self.config.base_delay}s"
        )

    def should_retry(self, error: Exception, retry_count: int) -> bool:
        """Determine if error is retryable.

        Args:
            error: Exception that occurred
            retry_count: Current retry count

        Returns:
            True if should retry
        """
        if retry_count >= self.config.max_retries:
            logger.info(f"Max retries ({self.config.max_retries}) reached, not retrying")
            return False

        if isinstance(error, NonRetryableError):
            logger.debug(f"NonRetryableError encountered: {error}")
            return False

        if isinstance(error, RetryableError):
            logger.info(f"RetryableError encountered: {error}, will retry")
            return True

        error_msg = str(error).lower()

        # Check non-retryable patterns first
        for pattern in self.NON_RETRYABLE_PATTERNS:
            if pattern in error_msg:
                logger.info(f"Non-retryable error pattern '{pattern}' found: {error}")
                return False

        for pattern in self.RETRYABLE_PATTERNS:
            if pattern in error_msg:
                logger.info(f"Retryable error pattern '{pattern}' found: {error}")
                return True

        # Unknown error - don't retry by default
        logger.warning(f"Unknown error type, not retrying: {error}")
        return False

    def get_delay(self, retry_count: int) -> float:
        """Calculate backoff delay for retry.

        Uses exponential backoff: base_delay * (exponential_base ^ retry_count)
        capped at max_delay, with optional ±20% jitter.

        Args:
            retry_count: Current retry count (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = self.config.base_delay * (self.config.exponential_base ** retry_count)
        delay = min(delay, self.config.max_delay)

        if self.config.jitter:
            delay = delay * random.uniform(0.8, 1.2)

        return delay

    def retry_sync(
        self,
        func: Callable[..., Any],
        *args,
        **kwargs,
    ) -> Any:
        """Retry a synchronous function with exponential backoff.

        Args:
            func: Function to retry
            *args: Positional arguments for function
            **kwargs: Keyword arguments for function

        Returns:
            Function result

        Raises:
            Last exception if all retries exhausted or the error is not retryable
        """
        retry_count = 0
        name = getattr(func, "__name__", repr(func))

        while True:
            try:
                if retry_count > 0:
                    logger.info(
                        f"Retry attempt {retry_count}/{self.config.max_retries} for {name}"
                    )

                result = func(*args, **kwargs)

                if retry_count > 0:
                    logger.info(f"{name} succeeded after {retry_count} retries")

                return result

            except Exception as e:
                if not self.should_retry(e, retry_count):
                    if retry_count > 0:
                        logger.error(f"{name} failed after {retry_count} retries: {e}")
                    raise

                delay = self.get_delay(retry_count)
                logger.warning(
                    f"{name} failed (attempt {retry_count + 1}), retrying in {delay:.1f}s: {e}"
                )
                self._sleep(delay)
                retry_count += 1
