"""
Run alert evaluation outside the API server.

With --once a single pass is run and its summary printed; otherwise the alert
scheduler loop runs until interrupted.
"""
import argparse
import asyncio
import json
import logging

from pricewatch.core.config import settings
from pricewatch.core.database import init_db
from pricewatch.services.alert_scheduler import AlertScheduler
from pricewatch.services.coingecko_client import CoinGeckoClient
from pricewatch.services.notification_dispatcher import NotificationDispatcher
from pricewatch.services.notification_service import NotificationService
from pricewatch.services.price_ingestor import PriceIngestor
from pricewatch.services.stores import AlertStore, NotificationStore, SnapshotStore

logger = logging.getLogger(__name__)


async def refresh_loop(ingestor: PriceIngestor, interval: float, stop: asyncio.Event):
    while not stop.is_set():
        try:
            await ingestor.refresh_prices()
        except Exception as e:
            logger.error(f"Price refresh failed: {e}")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


async def run(args) -> int:
    await init_db()

    alert_store = AlertStore()
    snapshot_store = SnapshotStore()
    client = CoinGeckoClient(
        timeout_seconds=settings.MARKET_DATA_TIMEOUT_SECONDS,
        base_url=settings.COINGECKO_BASE_URL,
        api_key=settings.COINGECKO_API_KEY,
    )
    ingestor = PriceIngestor(client, snapshot_store, alert_store, settings=settings)
    dispatcher = NotificationDispatcher(NotificationStore(), delivery=NotificationService(settings))
    scheduler = AlertScheduler(alert_store, snapshot_store, dispatcher, interval_seconds=args.interval)

    try:
        if args.once:
            if args.refresh:
                await ingestor.refresh_prices()
            result = await scheduler.run_pass()
            print(json.dumps(result.to_dict(), indent=2))
            return 1 if result.errors else 0

        stop = asyncio.Event()
        refresher = None
        if args.refresh:
            refresher = asyncio.create_task(refresh_loop(ingestor, args.interval, stop))
        await scheduler.start()
        try:
            await stop.wait()
        finally:
            stop.set()
            await scheduler.stop()
            if refresher:
                await refresher
        return 0
    finally:
        await client.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pricewatch-monitor",
        description="Evaluate price alerts against the latest snapshots",
    )
    parser.add_argument("--once", action="store_true", help="Run a single evaluation pass and exit")
    parser.add_argument("--refresh", action="store_true", help="Refresh prices before evaluating")
    parser.add_argument(
        "--interval",
        type=float,
        default=settings.MONITOR_INTERVAL_SECONDS,
        help="Seconds between passes (default: MONITOR_INTERVAL_SECONDS)",
    )
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.interval <= 0:
        parser.error("--interval must be positive")

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Monitor interrupted")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
