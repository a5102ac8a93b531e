from __future__ import annotations

import argparse
import asyncio
import json

from loguru import logger

from adapters.bingx_client import BingXClient
from engine.market import MarketData
from engine.rounding import normalize_symbol
from services.config_service import BotSettings


async def list_contracts(symbol: str) -> None:
    settings = BotSettings()
    client = BingXClient(host=settings.BINGX_HOST, timeout=settings.HTTP_TIMEOUT)
    try:
        contracts = await MarketData(client).list_contracts()
    finally:
        await client.close()
    if not contracts:
        logger.error("Could not fetch the contract list")
        return
    for c in sorted(contracts, key=lambda c: c.get("symbol", "")):
        print(
            f"{c.get('symbol')} | size: {c.get('size')} | leverage: {c.get('maxLeverage', '-')}x"
            f" | status: {c.get('status')} | name: {c.get('asset', '-')}"
        )
    target = normalize_symbol(symbol)
    info = next((c for c in contracts if c.get("symbol") == target), None)
    if info:
        print(f"\n=== {target} ===")
        print(json.dumps(info, indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(description="List BingX perpetual swap contracts")
    parser.add_argument("symbol", nargs="?", default="BTC-USDT")
    args = parser.parse_args()
    asyncio.run(list_contracts(args.symbol))


if __name__ == "__main__":
    main()
