"""
Client for the CoinGecko public API (market data only).
"""
import asyncio
from typing import Any, Dict, List, Optional

import aiohttp

from pricewatch.core.errors import ServerError, classify_exception, classify_http_status


class CoinGeckoClient:
    """Lightweight async client for CoinGecko market endpoints.

    Every call is a single attempt; failures surface as classified
    MarketDataError subclasses and retrying is left to the caller.
    """

    def __init__(
        self,
        timeout_seconds: int = 10,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str = "",
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=max(timeout_seconds, 1))
        self.api_key = api_key
        self._session: Optional[aiohttp.ClientSession] = None
        self._metrics = {
            "requests": 0,
            "timeouts": 0,
            "rate_limited": 0,
            "errors": 0,
        }

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def get_markets(self, provider_ids: List[str], vs_currency: str = "usd") -> List[Dict[str, Any]]:
        """Fetch market rows for the given CoinGecko ids in one request."""
        if not provider_ids:
            return []
        params = {
            "vs_currency": vs_currency,
            "ids": ",".join(provider_ids),
            "order": "market_cap_desc",
            "per_page": str(max(len(provider_ids), 1)),
            "page": "1",
            "sparkline": "false",
            "price_change_percentage": "24h",
        }
        payload = await self._get_json("/coins/markets", params)
        return payload if isinstance(payload, list) else []

    async def _get_json(self, path: str, params: Dict[str, str]) -> Any:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        self._metrics["requests"] += 1

        try:
            async with session.get(url, params=params, headers=self._headers(), timeout=self.timeout) as response:
                if response.status >= 400:
                    body = await response.text()
                    raise classify_http_status(response.status, f"CoinGecko HTTP {response.status}: {body[:200]}")
                try:
                    return await response.json()
                except (aiohttp.ContentTypeError, ValueError) as error:
                    raise ServerError(f"CoinGecko returned an unreadable body: {error}", status=response.status)
        except Exception as error:
            classified = classify_exception(error)
            if classified.status == 429:
                self._metrics["rate_limited"] += 1
            elif isinstance(error, asyncio.TimeoutError):
                self._metrics["timeouts"] += 1
            self._metrics["errors"] += 1
            if classified is error:
                raise
            raise classified from error

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": "PriceWatch/1.0"}
        if self.api_key:
            headers["x-cg-pro-api-key"] = self.api_key
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def get_metrics(self) -> Dict[str, int]:
        return dict(self._metrics)
