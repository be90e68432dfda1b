"""Retry logic with exponential backoff for provider rate limits.

This module provides retry functionality specifically for handling 429 rate
limit responses from a hosting provider. It implements exponential backoff
(1s, 2s, 4s) and fails fast for every other error. Writes go through the same
bounded retry count as reads, so a 429 on a write can never turn into an
unbounded stream of duplicate commits.
"""

import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from .errors import OperationCancelledError, RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar('T')

MAX_RETRIES = 3


class RateLimitSignal(Exception):
    """Internal signal raised by a request attempt that received HTTP 429.

    Attributes:
        retry_after: Seconds suggested by the provider's Retry-After header
    """

    def __init__(self, retry_after: Optional[float] = None):
        super().__init__("429 Too Many Requests")
        self.retry_after = retry_after


def retry_on_rate_limit(
    func: Callable[[], T],
    api: str = "unknown",
    path: Optional[str] = None,
    max_retries: int = MAX_RETRIES,
    cancel_event: Optional[threading.Event] = None,
) -> T:
    """Retry function on 429 rate limit with exponential backoff.

    Executes the given function, retrying up to ``max_retries`` times with
    exponential backoff (1s, 2s, 4s) when it raises RateLimitSignal. A
    larger Retry-After value from the provider wins over the computed wait.
    All other errors are passed through immediately.

    Args:
        func: Zero-argument callable performing one request attempt
        api: Provider display name used in the final error
        path: Request path used in the final error
        max_retries: Number of retries after the first attempt
        cancel_event: Optional event; when set, no further attempt is made

    Returns:
        The return value of the function

    Raises:
        RateLimitedError: If rate limit persists after all retries
        OperationCancelledError: If cancel_event is set before an attempt
        Other exceptions: Passed through immediately without retry

    Example:
        >>> result = retry_on_rate_limit(lambda: client.send(request), api="Gitea")
    """
    for retry_num in range(max_retries + 1):
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError(path)

        try:
            return func()
        except RateLimitSignal as signal:
            if retry_num >= max_retries:
                logger.error(
                    f"Rate limit persisted after {max_retries} retries, giving up"
                )
                raise RateLimitedError(api, path, attempts=max_retries + 1)

            if cancel_event is not None and cancel_event.is_set():
                raise OperationCancelledError(path)

            wait_time = 2 ** retry_num
            if signal.retry_after is not None and signal.retry_after > wait_time:
                wait_time = signal.retry_after
            logger.warning(
                f"Rate limit hit on {path}, retrying in {wait_time}s "
                f"(retry {retry_num + 1}/{max_retries})"
            )
            time.sleep(wait_time)

    # Unreachable, keeps type checkers happy
    raise RateLimitedError(api, path, attempts=max_retries + 1)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a numeric Retry-After header value.

    HTTP-date values are ignored and fall back to the computed backoff.

    Args:
        value: Raw header value or None

    Returns:
        Number of seconds, or None if absent or not numeric
    """
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None
