"""
Error taxonomy for market data fetches, alert evaluation and persistence
"""
import asyncio
from typing import Optional

import aiohttp


class PriceWatchError(Exception):
    """Base class for all service errors."""


class MarketDataError(PriceWatchError):
    """A market data fetch failed."""

    retryable = True

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NetworkConnectionError(MarketDataError):
    """Transport-level failure (DNS, refused connection, reset)."""


class FetchTimeoutError(MarketDataError):
    """The request exceeded its timeout and was aborted."""


class RateLimitError(MarketDataError):
    """Provider answered 429."""


class ServerError(MarketDataError):
    """Provider answered 5xx."""


class ClientError(MarketDataError):
    """Provider answered a 4xx other than 429."""

    retryable = False


class EvaluationError(PriceWatchError):
    """An alert could not be evaluated (malformed alert or missing snapshot)."""


class PersistenceError(PriceWatchError):
    """A store read or write failed."""


def classify_http_status(status: int, message: str = "") -> MarketDataError:
    """Map a non-success HTTP status to its error class."""
    detail = message or f"HTTP {status}"
    if status == 429:
        return RateLimitError(detail, status=status)
    if status >= 500:
        return ServerError(detail, status=status)
    return ClientError(detail, status=status)


def classify_exception(error: BaseException) -> MarketDataError:
    """Map a raw transport exception to its error class."""
    if isinstance(error, MarketDataError):
        return error
    if isinstance(error, (asyncio.TimeoutError, aiohttp.ServerTimeoutError)):
        return FetchTimeoutError("Request timed out", status=408)
    if isinstance(error, aiohttp.ClientResponseError):
        return classify_http_status(error.status, error.message)
    if isinstance(error, aiohttp.ClientError):
        return NetworkConnectionError(f"Connection failed: {error}")
    return NetworkConnectionError(str(error) or error.__class__.__name__)
