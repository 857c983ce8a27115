"""Retry strategy with exponential backoff for provider operations."""

import time
import random
from typing import Callable, TypeVar, Optional

from infra_reconcile.utils.errors import (
    ErrorContext,
    FatalProviderError,
    TransientProviderError,
    error_handler,
)
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

# Called before sleeping: (attempt number that failed, error, delay)
RetryCallback = Callable[[int, TransientProviderError, float], None]


class RetryStrategy:
    """Implements bounded exponential backoff for transient provider errors."""

    def __init__(
        self,
        max_attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize retry strategy.

        Args:
            max_attempts: Total attempts, including the first one
            base_delay: Base delay in seconds for first retry
            max_delay: Maximum delay in seconds between retries
            exponential_base: Base for exponential backoff calculation
            jitter: Whether to add random jitter to delay
            sleep: Function used to wait between attempts
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.sleep = sleep

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """Determine if an error should trigger a retry.

        Args:
            error: The classified exception
            attempt: Attempt number that just failed (1-indexed)

        Returns:
            True if the error is transient and attempts remain
        """
        return isinstance(error, TransientProviderError) and attempt < self.max_attempts

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        Args:
            attempt: Attempt number that just failed (1-indexed)

        Returns:
            Delay in seconds
        """
        delay = min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay
        )

        # Up to 10% extra so concurrent workers do not retry in lockstep
        if self.jitter:
            delay += random.uniform(0, delay * 0.1)

        return delay

    def execute_with_retry(
        self,
        func: Callable[[], T],
        context: Optional[ErrorContext] = None,
        on_retry: Optional[RetryCallback] = None
    ) -> T:
        """Execute a function with retry logic.

        Raw exceptions are classified by the error handler first, so a
        botocore throttling error is retried while an access-denied error
        is raised immediately.

        Args:
            func: Zero-argument callable to execute
            context: Error context attached to classified errors
            on_retry: Optional callback invoked before each backoff sleep

        Returns:
            Result of the function call

        Raises:
            FatalProviderError: On a non-retryable failure or when attempts
                are exhausted
            ReconcileError: Any other already-classified error
        """
        attempt = 0

        while True:
            attempt += 1
            try:
                result = func()

                if attempt > 1:
                    logger.info(f"Operation succeeded after {attempt - 1} retries")

                return result

            except Exception as e:
                error = error_handler.handle_exception(e, context)

                if not isinstance(error, TransientProviderError):
                    if error is e:
                        raise
                    raise error from e

                if not self.should_retry(error, attempt):
                    logger.error(f"All {self.max_attempts} attempts exhausted: {error.message}")
                    raise FatalProviderError(
                        f"Retry budget exhausted after {attempt} attempts: {error.message}",
                        context=error.context,
                        cause=error.cause or error,
                        suggestions=['Re-run once the provider has recovered; applied resources are kept in state']
                    ) from e

                delay = self.get_delay(attempt)
                logger.warning(
                    f"Attempt {attempt}/{self.max_attempts} failed: {error.message}. "
                    f"Retrying in {delay:.2f}s..."
                )
                if on_retry:
                    on_retry(attempt, error, delay)

                self.sleep(delay)
