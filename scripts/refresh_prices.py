"""CLI for one-off price store refreshes.

Usage:
    python scripts/refresh_prices.py                 # RapidAPI ranked snapshot
    python scripts/refresh_prices.py --binance       # also pull a Binance REST snapshot
    python scripts/refresh_prices.py --show BTC ETH  # print merged entries afterwards
"""

import argparse
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


async def run(binance: bool, show: list[str]) -> int:
    from app.services.prices.errors import UpstreamError
    from app.services.prices.feeds import binance_rest, price_store, rapidapi_client
    from app.services.prices.rapidapi import refresh_rapidapi_prices

    if not rapidapi_client.configured:
        logger.error("RAPIDAPI_KEY is not set")
        return 1

    try:
        result = await refresh_rapidapi_prices(price_store, rapidapi_client)
        logger.info(result["message"])
        if binance:
            prices = await binance_rest.all_prices()
            logger.info("Binance REST snapshot: %d prices", len(prices))
    except UpstreamError as e:
        logger.error("Refresh failed: %s", e)
        return 1

    stats = price_store.get_stats()
    print("\n=== Price Store ===")
    for key, value in stats.items():
        print(f"  {key}: {value}")
    for symbol in show:
        entry = price_store.get_price(symbol)
        if entry is None:
            print(f"  {symbol.upper()}: not found")
        else:
            print(f"  {entry.symbol}: {entry.price} ({entry.source}, rank {entry.rank})")
    print("===================\n")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Gridlock price store refresh")
    parser.add_argument("--binance", action="store_true", help="Also pull a Binance REST snapshot")
    parser.add_argument("--show", nargs="*", default=[], metavar="SYMBOL", help="Symbols to print")
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args.binance, args.show)))


if __name__ == "__main__":
    main()
