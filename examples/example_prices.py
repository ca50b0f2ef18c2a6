"""Example: Real-time price feed over the pricer socket.

This script demonstrates the realtime pipeline:

    PricerSocket → typed listeners (Price / Snapshot)

Each received price is logged, optionally throttled, and a summary of
the socket counters is printed at shutdown.

Prerequisites:
    1. Copy ``.env.sample`` to ``.env`` and set ``PRICER_API_KEY``.
    2. Install dependencies: ``pip install -e .``

Usage:
    python -m examples.example_prices
    python -m examples.example_prices --sku "5021;6"
    python -m examples.example_prices --snapshots --log-every 10

Press Ctrl+C to stop.
"""

import argparse
import asyncio
import logging

from pydantic import ValidationError

from core.models import Price, Snapshot
from infra.settings import PricerSettings
from infra.socket_api import PricerSocket

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


async def run(args: argparse.Namespace, settings: PricerSettings) -> None:
    """Subscribe and log events until cancelled."""
    socket: PricerSocket = PricerSocket(config=settings.socket_config())
    total_prices: int = 0

    def on_price(price: Price) -> None:
        nonlocal total_prices
        total_prices += 1
        if total_prices % args.log_every == 0:
            logger.info(
                "[%s] buy=%dk %.2fref sell=%dk %.2fref (#%d)",
                price.sku,
                price.buy.keys,
                price.buy.metal,
                price.sell.keys,
                price.sell.metal,
                total_prices,
            )

    def on_snapshot(snapshot: Snapshot) -> None:
        logger.info(
            "[%s] snapshot: %d buy orders, %d sell orders",
            snapshot.sku,
            len(snapshot.buy_orders),
            len(snapshot.sell_orders),
        )

    socket.on_price(on_price, sku=args.sku)
    if args.snapshots:
        socket.on_snapshot(on_snapshot, sku=args.sku)

    logger.info("Connecting to pricer socket...")
    try:
        await socket.connect()
    except Exception as exc:
        logger.exception("Failed to connect to pricer socket: %s", exc)
        return

    logger.info("Subscribed to %s, waiting for events...", sorted(socket.topics))

    try:
        await asyncio.Event().wait()
    finally:
        await socket.disconnect()

        stats: dict = socket.stats()
        logger.info("=" * 50)
        logger.info("Final Statistics")
        logger.info("-" * 50)
        logger.info("Prices received: %d", total_prices)
        logger.info("Socket events received: %d", stats["events_received"])
        logger.info(
            "Parse errors: %d, listener errors: %d",
            stats["parse_errors"],
            stats["listener_errors"],
        )
        logger.info("=" * 50)


def main() -> None:
    """Run the realtime price example."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Real-time price feed from the pricer socket",
    )
    parser.add_argument(
        "--sku",
        type=str,
        default=None,
        help="Only receive events for this sku (default: all skus)",
    )
    parser.add_argument(
        "--snapshots",
        action="store_true",
        help="Also log order book snapshots",
    )
    parser.add_argument(
        "--log-every",
        type=int,
        default=1,
        help="Log every Nth price (default: 1 = all)",
    )
    args: argparse.Namespace = parser.parse_args()

    try:
        settings: PricerSettings = PricerSettings()
    except ValidationError:
        logger.error(
            "Missing PRICER_API_KEY. See .env.sample for reference.",
        )
        return

    try:
        asyncio.run(run(args, settings))
    except KeyboardInterrupt:
        logger.info("Shutting down (received KeyboardInterrupt)...")


if __name__ == "__main__":
    main()
