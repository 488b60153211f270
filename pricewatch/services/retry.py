"""
Retry helper for market data fetches
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import aiohttp

from pricewatch.core.errors import MarketDataError, RateLimitError, classify_exception

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_delay(error: MarketDataError, attempt: int, base_delay: float, rate_limit_base_delay: float) -> float:
    """Delay before the next attempt; rate limits back off linearly."""
    if isinstance(error, RateLimitError):
        return attempt * rate_limit_base_delay
    return base_delay


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    rate_limit_base_delay: Optional[float] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "request",
) -> T:
    """
    Run an async operation, retrying transient market data failures.

    Args:
        operation: Zero-argument coroutine factory
        max_attempts: Total attempts including the first one
        base_delay: Fixed delay after connection, timeout and 5xx failures
        rate_limit_base_delay: Per-attempt delay step after a 429 (defaults to base_delay)
        sleep: Awaitable sleep, replaceable in tests
        description: Label used in log lines

    Returns:
        The operation result

    Raises:
        MarketDataError: the classified error of the last attempt, or the first
        non-retryable one
    """
    attempts = max(1, int(max_attempts))
    step = base_delay if rate_limit_base_delay is None else rate_limit_base_delay

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except (MarketDataError, aiohttp.ClientError, asyncio.TimeoutError) as raw_error:
            error = classify_exception(raw_error)
            if not error.retryable or attempt >= attempts:
                if error.retryable:
                    logger.error(f"{description} failed after {attempts} attempts: {error}")
                else:
                    logger.error(f"{description} failed with non-retryable error: {error}")
                if error is raw_error:
                    raise
                raise error from raw_error

            delay = retry_delay(error, attempt, base_delay, step)
            logger.warning(
                f"{description} failed (attempt {attempt}/{attempts}): {error}. Retrying in {delay:.2f}s"
            )
            await sleep(delay)

    raise RuntimeError(f"{description} failed after retries")
