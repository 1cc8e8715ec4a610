"""Bounded exponential backoff for ledger and store calls.

This module retries transient failures a fixed number of times.
Exhausted retries re-raise the last error to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Callable, TypeVar

from core.config import LedgerSyncConfig
from core.constants import MAX_RETRY_DELAY_SECONDS
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry settings.

    Attributes:
        max_retries: Attempts after the first failure.
        base_delay: Delay before the first retry in seconds.
        max_delay: Upper bound for any single delay.
    """

    max_retries: int
    base_delay: float
    max_delay: float = MAX_RETRY_DELAY_SECONDS

    @classmethod
    def from_config(cls, config: LedgerSyncConfig) -> "RetryPolicy":
        return cls(max_retries=config.max_retries, base_delay=config.retry_base_delay)

    def delay_for(self, attempt: int) -> float:
        """Return backoff delay for a one-based retry attempt."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    retry_on: tuple[type[Exception], ...],
    description: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run an operation, retrying listed errors with exponential backoff.

    Args:
        operation: Zero-argument callable to run.
        policy: Retry limits and delays.
        retry_on: Exception types treated as transient.
        description: Short operation name used in log events.
        sleep: Sleep function, replaceable in tests.

    Returns:
        Operation result.

    Raises:
        Exception: The last transient error once retries are exhausted,
            or any non-transient error immediately.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except retry_on as error:
            attempt += 1
            if attempt > policy.max_retries:
                _LOGGER.error(
                    "retry_exhausted",
                    operation=description,
                    attempts=attempt,
                    error=str(error),
                )
                raise
            delay = policy.delay_for(attempt)
            _LOGGER.warning(
                "retry_scheduled",
                operation=description,
                attempt=attempt,
                delay_seconds=delay,
                error=str(error),
            )
            sleep(delay)
