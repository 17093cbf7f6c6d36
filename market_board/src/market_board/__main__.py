"""
Command line entry point for operators.

    python -m market_board price --scope Crystal 5729 5730
    python -m market_board board --scope Aether dyes.json
    python -m market_board health

``price`` looks items up through :class:`PriceFetchService`; ``board``
loads a JSON list of dyes and prices the eligible ones through
:class:`MarketBoardService`, exactly as an application would; ``health``
probes the Universalis API.  Logging verbosity follows ``LOG_LEVEL``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from pydantic import TypeAdapter

from .config import DEFAULT_REGION_SCOPE, PriceApiSettings
from .models import Dye
from .models_events import FETCH_ERROR, FETCH_STARTED
from .services.cache_backend import build_cache_backend
from .services.market_board_service import MarketBoardService
from .services.metrics_service import MetricsService, start_metrics_server
from .services.price_display import format_price
from .services.price_fetcher import PriceFetchService
from .services.settings_store import JsonFileSettingsStore

logger = logging.getLogger("market_board")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="market_board", description="Universalis dye price lookups")
    sub = parser.add_subparsers(dest="command", required=True)

    price = sub.add_parser("price", help="Look up prices for item ids")
    price.add_argument("item_ids", nargs="+", type=int)
    price.add_argument("--scope", default=DEFAULT_REGION_SCOPE, help="World or data center name")

    board = sub.add_parser("board", help="Price the eligible dyes from a JSON file")
    board.add_argument("dyes_file", help="JSON list of {item_id, name, acquisition, category}")
    board.add_argument("--scope", default=DEFAULT_REGION_SCOPE)
    board.add_argument("--settings", default="market_board_settings.json", help="Category settings file")

    sub.add_parser("health", help="Check Universalis API availability")
    return parser


async def run_price(fetcher: PriceFetchService, item_ids: List[int], scope: str) -> int:
    prices = await fetcher.get_prices_for_scope(item_ids, scope)
    for item_id in item_ids:
        record = prices.get(item_id)
        shown = format_price(record.current_min_price) if record else "no price"
        print(f"{item_id}\t{shown}\t{scope}")
    return 0 if prices else 1


async def run_board(fetcher: PriceFetchService, dyes_file: str, scope: str, settings_path: str) -> int:
    with open(dyes_file, "r", encoding="utf-8") as f:
        dyes = TypeAdapter(List[Dye]).validate_python(json.load(f))
    service = MarketBoardService(
        fetcher,
        JsonFileSettingsStore(settings_path),
        region_scope=scope,
        prices_enabled=True,
    )
    metrics = MetricsService(service)
    start_metrics_server()
    errors: List[str] = []
    service.subscribe(FETCH_STARTED, lambda event: logger.info("Fetching %d prices", event["count"]))
    service.subscribe(FETCH_ERROR, lambda event: errors.append(event["reason"]))
    prices = await service.fetch_prices_for(dyes)
    for dye in dyes:
        record = prices.get(dye.item_id)
        if record is not None:
            print(f"{dye.item_id}\t{dye.name}\t{format_price(record.current_min_price)}")
    metrics.close()
    service.close()
    for reason in errors:
        print(f"error: {reason}", file=sys.stderr)
    return 1 if errors else 0


async def run_health(fetcher: PriceFetchService) -> int:
    status = await fetcher.get_api_status()
    state = "available" if status["available"] else "unavailable"
    print(f"Universalis API: {state} ({status['latency_ms']} ms)")
    return 0 if status["available"] else 1


async def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO"))
    settings = PriceApiSettings.from_env()
    cache = build_cache_backend(settings)
    fetcher = PriceFetchService(cache=cache, settings=settings)
    try:
        if args.command == "price":
            return await run_price(fetcher, args.item_ids, args.scope)
        if args.command == "board":
            return await run_board(fetcher, args.dyes_file, args.scope, args.settings)
        return await run_health(fetcher)
    finally:
        await fetcher.close()
        close_cache = getattr(cache, "close", None)
        if close_cache is not None:
            await close_cache()


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
