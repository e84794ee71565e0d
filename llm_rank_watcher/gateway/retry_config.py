"""
Retry and timeout configuration for provider calls.

Only transport-level failures (the request never reached the provider) are
retried here. HTTP error statuses and overall deadline expiry are surfaced
to the attempt runner as failed attempts; the next attempt number is the
retry for those.

Example:
    >>> from llm_rank_watcher.gateway.retry_config import create_retry_decorator
    >>> @create_retry_decorator()
    ... async def post_once():
    ...     # Retried on httpx.ConnectError with exponential backoff
    ...     ...
"""

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

# ============================================================================
# RETRY CONSTANTS
# ============================================================================

# Total tries including the first one
MAX_ATTEMPTS = 3

# Backoff bounds (seconds); all tries share the single call deadline below
MIN_WAIT_SECONDS = 1
MAX_WAIT_SECONDS = 8

# Deadline for one gateway call, retries included
DEFAULT_TIMEOUT_SECONDS = 60.0

# Maximum characters of a provider error body kept in exception messages
MAX_ERROR_BODY_CHARS = 500

# ============================================================================
# RETRY DECORATOR FACTORY
# ============================================================================


def create_retry_decorator():
    """
    Create a tenacity retry decorator for provider transport calls.

    Returns:
        Retry decorator: up to MAX_ATTEMPTS tries, exponential backoff
        between MIN_WAIT_SECONDS and MAX_WAIT_SECONDS, retrying only on
        httpx.ConnectError, re-raising the last error.
    """
    return retry(
        stop=stop_after_attempt(MAX_ATTEMPTS),
        wait=wait_exponential(
            multiplier=1,
            min=MIN_WAIT_SECONDS,
            max=MAX_WAIT_SECONDS,
        ),
        retry=retry_if_exception_type(httpx.ConnectError),
        reraise=True,
    )
