"""Bounded retry with exponential backoff for external calls.

Delay before retry ``n`` (1-indexed) is ``base_delay * 2 ** (n - 1)``.
Only errors flagged ``transient`` are retried; anything else propagates on
the first attempt.
"""

import logging
import time
from collections.abc import Callable
from typing import TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Return the delay in seconds before retry ``attempt`` (1-indexed).

    Raises:
        ValueError: If ``attempt`` is less than 1.
    """
    if attempt < 1:
        msg = "Attempt number must be 1 or greater"
        raise ValueError(msg)
    return base_delay * (2 ** (attempt - 1))


def call_with_retry(
    func: Callable[[], T],
    *,
    max_retries: int,
    base_delay: float,
    retry_on: tuple[type[Exception], ...],
    on_retry: Callable[[int, Exception], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` and retry transient failures up to ``max_retries`` times.

    Args:
        func: Zero-argument callable to invoke.
        max_retries: Retries after the first attempt; 0 disables retrying.
        base_delay: Backoff base in seconds.
        retry_on: Exception types eligible for retry. An instance is retried
            only when its ``transient`` attribute is truthy.
        on_retry: Called with ``(retry_number, error)`` before each sleep.
        sleep: Sleep function, injectable for tests.

    Returns:
        Whatever ``func`` returns on its first successful call.
    """
    retries = 0
    while True:
        try:
            return func()
        except retry_on as exc:
            if not getattr(exc, "transient", False) or retries >= max_retries:
                raise
            retries += 1
            delay = backoff_delay(retries, base_delay)
            logger.warning("Transient failure (%s); retry %d/%d in %.2fs", exc, retries, max_retries, delay)
            if on_retry is not None:
                on_retry(retries, exc)
            sleep(delay)
