"""Retry with exponential backoff for transient upstream failures."""

import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")


def retry_with_backoff(
    func: Callable[[], T],
    is_retryable: Callable[[Exception], bool],
    max_attempts: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 8.0,
    backoff_factor: float = 2.0,
) -> T:
    """
    Call ``func`` until it succeeds, retrying only errors ``is_retryable`` accepts.

    Args:
        func: Zero-argument callable to invoke
        is_retryable: Predicate deciding whether a raised exception is transient
        max_attempts: Total number of attempts, including the first
        initial_delay: Delay before the second attempt, in seconds
        max_delay: Upper bound for any single delay
        backoff_factor: Multiplier applied to the delay after each failure

    Returns:
        Result of the first successful call

    Raises:
        The last exception once attempts are exhausted, or any non-retryable
        exception immediately
    """
    delay = initial_delay
    attempt = 1
    while True:
        try:
            return func()
        except Exception as e:
            if attempt >= max_attempts or not is_retryable(e):
                raise
            time.sleep(min(delay, max_delay))
            delay *= backoff_factor
            attempt += 1
