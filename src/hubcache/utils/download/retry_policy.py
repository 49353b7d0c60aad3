"""
Retry Policy with exponential backoff orchestration.

Provides configurable retry logic with exponential backoff, max attempts,
a retry predicate and callback support. Used by the metadata resolvers only:
the transfer engine makes exactly one attempt per call.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class RetryPolicy:
    """Exponential backoff retry orchestration."""

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_factor: float = 2.0,
        retry_on: Optional[Callable[[Exception], bool]] = None,
    ):
        """
        Initialize retry policy.

        Args:
            max_retries: Maximum number of attempts (1 = no retry)
            initial_delay: Initial delay in seconds
            max_delay: Maximum delay in seconds
            backoff_factor: Delay multiplier for each retry
            retry_on: Predicate deciding whether an exception is worth another
                attempt (None = retry every exception)
        """
        self.max_retries = max(1, max_retries)
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.retry_on = retry_on

    def execute(
        self,
        operation: Callable[[], T],
        on_retry: Optional[Callable[[int, Exception], None]] = None
    ) -> T:
        """
        Execute operation with retry logic.

        Args:
            operation: Function to execute
            on_retry: Optional callback(attempt, exception) called before each retry

        Returns:
            Result of operation

        Raises:
            The first non-retryable exception, or the last exception once
            all attempts are exhausted
        """
        delay = self.initial_delay

        for attempt in range(self.max_retries):
            try:
                return operation()
            except Exception as e:
                if self.retry_on is not None and not self.retry_on(e):
                    raise
                if attempt == self.max_retries - 1:
                    raise

                logger.warning(
                    f"Attempt {attempt + 1}/{self.max_retries} failed: {e}"
                )
                if on_retry:
                    on_retry(attempt, e)

                time.sleep(delay)
                delay = min(delay * self.backoff_factor, self.max_delay)

        raise RuntimeError("Operation failed with no exception recorded")
