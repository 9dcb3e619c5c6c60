"""
Rate-limit helpers for calls against storefront APIs.

WooCommerce hosts throttle aggressively and do not send usable backpressure
signals, so the policy is a single fixed back-off followed by one retry.
Anything beyond that is left to the operator re-running the batch.
"""
import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from app.utils.errors import RateLimitError
from app.utils.logger import log

T = TypeVar("T")

RATE_LIMIT_MARKERS = ("rate limit", "too many requests")


def is_rate_limited(status_code: Optional[int] = None, message: Optional[str] = None) -> bool:
    """
    Check whether a response or error message indicates throttling.

    Args:
        status_code: HTTP status code, if known
        message: Response body or exception text

    Returns:
        True for HTTP 429 or a message mentioning a rate limit
    """
    if status_code == 429:
        return True
    text = (message or "").lower()
    if "429" in text:
        return True
    return any(marker in text for marker in RATE_LIMIT_MARKERS)


async def retry_once_on_rate_limit(
    operation: Callable[[], Awaitable[T]],
    backoff_seconds: float,
    label: str = "request",
) -> T:
    """
    Run an async operation, retrying exactly once after a rate limit.

    The second RateLimitError propagates so the caller can abort its batch.
    """
    try:
        return await operation()
    except RateLimitError as e:
        log.warning(f"Rate limited during {label}, backing off {backoff_seconds:.1f}s: {e}")
        await asyncio.sleep(backoff_seconds)
    return await operation()
