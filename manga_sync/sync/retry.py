"""
Retry executor for MangaDex calls.

Rate limits (HTTP 429) back off on a minute scale; other failures back off
for a couple of seconds.
"""

import time
from typing import Callable, Optional, TypeVar

from manga_sync.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

RATE_LIMIT_BACKOFF_SECONDS = 60
ERROR_BACKOFF_SECONDS = 2
DEFAULT_MAX_ATTEMPTS = 3


class RetryExhaustedError(Exception):
    """Raised when every attempt of a labelled operation has failed."""

    def __init__(self, label: str, attempts: int, last_error: Exception):
        super().__init__(f'All retries exhausted for "{label}" after {attempts} attempts: {last_error}')
        self.label = label
        self.attempts = attempts
        self.last_error = last_error


def is_rate_limited(error: Exception) -> bool:
    """True for HTTP 429 failures."""
    status = getattr(error, "status_code", None)
    if status is None:
        response = getattr(error, "response", None)
        status = getattr(response, "status_code", None)
    return status == 429


def backoff_seconds(error: Exception, attempt: int) -> int:
    """Delay before the attempt after ``attempt`` (1-based)."""
    if is_rate_limited(error):
        return RATE_LIMIT_BACKOFF_SECONDS * attempt
    return ERROR_BACKOFF_SECONDS * attempt


def with_retry(
    operation: Callable[[], T],
    label: str,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    sleep: Optional[Callable[[float], None]] = None,
) -> T:
    """
    Run an operation with bounded retries.

    Args:
        operation: Zero-argument callable to attempt
        label: Name of the call, carried into logs and the exhaustion error
        max_attempts: Total attempts including the first
        sleep: Function used to wait between attempts

    Returns:
        The operation's result

    Raises:
        RetryExhaustedError: After ``max_attempts`` failures, chained from the last one
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    sleep = sleep or time.sleep

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except Exception as e:
            if attempt == max_attempts:
                logger.error("Retries exhausted", label=label, attempts=attempt, error=str(e))
                raise RetryExhaustedError(label, attempt, e) from e

            wait = backoff_seconds(e, attempt)
            if is_rate_limited(e):
                logger.warning(
                    "Rate limited, backing off",
                    label=label,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    wait_seconds=wait,
                )
            else:
                logger.warning(
                    "Call failed, retrying",
                    label=label,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    wait_seconds=wait,
                    error=str(e),
                )
            sleep(wait)

    # Unreachable: the loop either returns or raises
    raise AssertionError("with_retry loop exited without result")
