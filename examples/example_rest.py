"""Example: Query the pricer REST API through the rate-limited client.

Fetches the key rate, the price and snapshot of one sku, and the
registered listings, then logs the client counters.

Prerequisites:
    1. Copy ``.env.sample`` to ``.env`` and set ``PRICER_API_KEY``.
    2. Install dependencies: ``pip install -e .``

Usage:
    python -m examples.example_rest
    python -m examples.example_rest --sku "5021;6"
"""

import argparse
import asyncio
import logging

from pydantic import ValidationError

from core.errors import ApiError
from core.models import Price, Rate, Snapshot
from infra.http_api import PricerHttpClient
from infra.settings import PricerSettings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


async def run(sku: str, settings: PricerSettings) -> None:
    async with PricerHttpClient(config=settings.http_config()) as client:
        try:
            rate: Rate = await client.get_rate()
            logger.info("Key rate: buy=%.2fref sell=%.2fref", rate.buy, rate.sell)

            price: Price = await client.get_price(sku)
            logger.info(
                "[%s] buy=%dk %.2fref sell=%dk %.2fref",
                price.sku,
                price.buy.keys,
                price.buy.metal,
                price.sell.keys,
                price.sell.metal,
            )

            snapshot: Snapshot = await client.get_snapshot(sku)
            logger.info(
                "[%s] %d buy orders, %d sell orders",
                snapshot.sku,
                len(snapshot.buy_orders),
                len(snapshot.sell_orders),
            )

            listings = await client.get_listings()
            logger.info("Registered listings: %d", len(listings))
        except ApiError as exc:
            logger.error("Request failed (status=%d): %s", exc.status, exc.message)

        stats: dict = client.stats()
        logger.info(
            "Requests sent=%d failed=%d, tokens left=%d",
            stats["requests_sent"],
            stats["requests_failed"],
            stats["scheduler"].tokens_available,
        )


def main() -> None:
    """Run the REST example."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Query the pricer REST API",
    )
    parser.add_argument(
        "--sku",
        type=str,
        default="5021;6",
        help="Item sku to look up (default: 5021;6)",
    )
    args: argparse.Namespace = parser.parse_args()

    try:
        settings: PricerSettings = PricerSettings()
    except ValidationError:
        logger.error("Missing PRICER_API_KEY. See .env.sample for reference.")
        return

    asyncio.run(run(args.sku, settings))


if __name__ == "__main__":
    main()
