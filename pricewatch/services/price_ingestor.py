"""
Price ingestion: fetches market snapshots and writes them to the snapshot store
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from pricewatch.core.config import settings as default_settings
from pricewatch.core.types import Snapshot, is_finite_number, utc_now
from pricewatch.services.coingecko_client import CoinGeckoClient
from pricewatch.services.retry import retry_with_backoff
from pricewatch.services.stores import AlertStore, SnapshotStore

logger = logging.getLogger(__name__)

# Symbol to CoinGecko id mapping
SYMBOL_MAP: Dict[str, str] = {
    "btc": "bitcoin",
    "eth": "ethereum",
    "sol": "solana",
    "ada": "cardano",
    "dot": "polkadot",
    "matic": "matic-network",
    "avax": "avalanche-2",
    "atom": "cosmos",
    "link": "chainlink",
    "xrp": "ripple",
    "ltc": "litecoin",
    "bch": "bitcoin-cash",
    "xlm": "stellar",
    "algo": "algorand",
    "vet": "vechain",
    "theta": "theta-token",
    "tfuel": "theta-fuel",
    "eos": "eos",
    "tron": "tron",
    "ksm": "kusama",
}


def _optional_float(value: Any) -> Optional[float]:
    return float(value) if is_finite_number(value) else None


class PriceIngestor:
    """Wraps the market data client with retries and persists normalized snapshots"""

    def __init__(
        self,
        client: CoinGeckoClient,
        snapshot_store: SnapshotStore,
        alert_store: Optional[AlertStore] = None,
        settings=default_settings,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        symbol_map: Optional[Dict[str, str]] = None,
    ):
        self.client = client
        self.snapshot_store = snapshot_store
        self.alert_store = alert_store
        self.settings = settings
        self.clock = clock
        self.sleep = sleep
        self.symbol_map = dict(symbol_map or SYMBOL_MAP)
        self._last_refresh: Optional[datetime] = None
        self._last_error: Optional[str] = None

    async def fetch_snapshots(self, symbols: Iterable[str]) -> List[Snapshot]:
        """
        Fetch current market values for the given symbols

        Args:
            symbols: Tickers such as "btc"; unmapped tickers are skipped

        Returns:
            One Snapshot per symbol the provider returned

        Raises:
            MarketDataError: once retries are exhausted or on a non-retryable failure
        """
        provider_ids: Dict[str, str] = {}
        for symbol in sorted({s.lower() for s in symbols if s}):
            provider_id = self.symbol_map.get(symbol)
            if provider_id is None:
                logger.debug(f"No provider id for symbol {symbol}, skipping")
                continue
            provider_ids[provider_id] = symbol

        if not provider_ids:
            return []

        rows = await retry_with_backoff(
            lambda: self.client.get_markets(list(provider_ids)),
            max_attempts=self.settings.MARKET_DATA_MAX_ATTEMPTS,
            base_delay=self.settings.MARKET_DATA_RETRY_DELAY_SECONDS,
            rate_limit_base_delay=self.settings.RATE_LIMIT_BASE_DELAY_SECONDS,
            sleep=self.sleep,
            description="CoinGecko markets request",
        )

        observed_at = self.clock()
        snapshots = []
        for row in rows:
            symbol = provider_ids.get(str(row.get("id", "")))
            if symbol is None:
                continue
            snapshots.append(self._to_snapshot(symbol, row, observed_at))
        return snapshots

    async def refresh_prices(self, symbols: Optional[Iterable[str]] = None) -> int:
        """Fetch and upsert one ingestion cycle; returns the number of rows written."""
        target_symbols = list(symbols) if symbols is not None else await self.get_tracked_symbols()
        logger.info(f"Refreshing prices for: {', '.join(sorted(target_symbols))}")

        try:
            snapshots = await self.fetch_snapshots(target_symbols)
            if not snapshots:
                logger.warning("Price refresh returned no snapshots; keeping previous values")
                return 0
            updated = await self.snapshot_store.upsert_snapshots(snapshots)
        except Exception as e:
            self._last_error = str(e)
            logger.error(f"Price refresh failed: {e}")
            raise

        self._last_refresh = self.clock()
        self._last_error = None
        logger.info(f"Upserted {updated} price snapshots")
        return updated

    async def get_tracked_symbols(self) -> List[str]:
        symbols: List[str] = []
        if self.alert_store is not None:
            symbols = await self.alert_store.list_tracked_symbols()
        return symbols or self.settings.get_default_symbols()

    def get_health(self) -> Dict[str, Any]:
        return {
            "last_refresh": self._last_refresh.isoformat() if self._last_refresh else None,
            "last_error": self._last_error,
            "telemetry": self.client.get_metrics(),
        }

    @staticmethod
    def _to_snapshot(symbol: str, row: Dict[str, Any], observed_at: datetime) -> Snapshot:
        return Snapshot(
            symbol=symbol,
            price=_optional_float(row.get("current_price")),
            change_24h=_optional_float(row.get("price_change_24h")),
            change_pct_24h=_optional_float(row.get("price_change_percentage_24h")),
            volume_24h=_optional_float(row.get("total_volume")),
            market_cap=_optional_float(row.get("market_cap")),
            observed_at=observed_at,
            provider_id=str(row.get("id", "")),
            name=str(row.get("name") or ""),
            image=str(row.get("image") or ""),
        )
