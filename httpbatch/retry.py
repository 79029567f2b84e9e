"""Retry policy shared by standalone requests and batch rounds."""

from __future__ import annotations

# Status codes worth another attempt: locked, too early, rate limited and
# transient server failures.
RETRYABLE_STATUS_CODES = frozenset({423, 425, 429, 500, 502, 503, 504, 507, 510})

# Hard cap on retry loops, matching the retry_count clamp.
MAX_RETRY_ROUNDS = 50

MAX_BACKOFF = 5


def should_retry(
    error_code: int,
    status_code: int,
    is_timeout: bool,
    retry_count: int,
    max_retry: int,
) -> bool:
    """Decide whether a finished attempt gets another try.

    An attempt that reports neither an error code nor a status code never
    really completed and is retried too. Callers that deliberately produce
    status 0 will see it retried.

    Args:
        error_code: Transport error code, 0 on success.
        status_code: HTTP status, 0 when none was received.
        is_timeout: Whether the attempt timed out.
        retry_count: Retries already performed.
        max_retry: Maximum number of retries.

    Returns:
        True if the request should be sent again.
    """
    if retry_count >= max_retry:
        return False
    if is_timeout:
        return True
    if status_code in RETRYABLE_STATUS_CODES:
        return True
    return error_code == 0 and status_code == 0


def backoff_timeout(retry_count: int, timeout: float) -> float:
    """Timeout for a retry: 1, 3, 5, 5, ... seconds.

    An unbounded timeout (0) stays unbounded.
    """
    if timeout > 0:
        return min(MAX_BACKOFF, retry_count * 2 - 1)
    return timeout
