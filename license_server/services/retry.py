"""
Bounded retry with exponential backoff for a single fallible call.

Knows nothing about webhooks or licenses. The delay before retry n (1-indexed) is
min(base_delay * 2 ** (n - 1), max_delay): 1s, 2s, 4s, ... with the defaults.
Sleeping uses time.sleep, so it suspends only the calling worker thread.
"""
import logging
import time
from typing import Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(attempt: int, base_delay: float = 1.0, max_delay: float = 10.0) -> float:
    """Delay in seconds after the given failed attempt (1-indexed)."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def retry(
    fn: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    should_retry: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[int, Exception], None]] = None,
) -> T:
    """
    Call fn until it succeeds or attempts run out.

    The last exception is re-raised as-is when attempts are exhausted or when
    should_retry(exc) returns False. on_retry(attempt, exc) fires before each
    wait, never after the final attempt.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = 1
    while True:
        try:
            return fn()
        except Exception as e:
            if attempt >= max_attempts:
                raise
            if should_retry is not None and not should_retry(e):
                raise

            delay = compute_backoff(attempt, base_delay, max_delay)
            if on_retry is not None:
                on_retry(attempt, e)
            logger.debug("Attempt %d failed (%s); retrying in %.2fs", attempt, e, delay)
            time.sleep(delay)
            attempt += 1
