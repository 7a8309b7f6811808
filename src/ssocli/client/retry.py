"""Retry with exponential backoff shared by the OAuth and portal clients.

A call is retried when it fails at the transport level
(:class:`~ssocli.exceptions.ConnectionError_`) or when the server answers
with a 5xx status. Client errors (4xx) are never retried: they carry
protocol meaning such as ``authorization_pending`` that the caller must
see immediately. The delay doubles each attempt: 1 s, 2 s, 4 s, ...
"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from ssocli.exceptions import APIError, ConnectionError_

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, ConnectionError_):
        return True
    return isinstance(exc, APIError) and exc.status_code >= 500


def call_with_retry(
    attempt_fn: Callable[[], T],
    operation: str,
    max_attempts: int = 3,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run *attempt_fn* up to *max_attempts* times.

    Args:
        attempt_fn: Performs one complete request and returns the decoded
            result or raises.
        operation: Name used in log messages (e.g. ``"CreateToken"``).
        max_attempts: Total number of attempts, including the first.
        sleep: Injected for tests.

    Returns:
        The first successful result.

    Raises:
        The last error once attempts are exhausted, or the first
        non-retryable error immediately.
    """
    for attempt in range(max_attempts):
        try:
            return attempt_fn()
        except (APIError, ConnectionError_) as exc:
            if not is_retryable(exc) or attempt + 1 >= max_attempts:
                raise
            delay = 2**attempt
            logger.debug(
                "%s failed: %s, retrying in %ss (attempt %d/%d)",
                operation,
                exc,
                delay,
                attempt + 1,
                max_attempts,
            )
            sleep(delay)
    raise AssertionError("max_attempts must be at least 1")
