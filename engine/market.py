from __future__ import annotations

from typing import Any

from loguru import logger

from adapters.base import ExchangeClient
from engine.errors import PriceUnavailable
from engine.models import ContractSpec


PRICE_PATH = "/openApi/swap/v2/quote/price"
CONTRACTS_PATH = "/openApi/swap/v2/quote/contracts"
BALANCE_PATH = "/openApi/swap/v2/user/balance"
SERVER_TIME_PATH = "/openApi/swap/v2/server/time"

FALLBACK_CONTRACT = ContractSpec(
    min_order_qty=0.001,
    tick_size=0.00001,
    step_size=0.001,
    min_notional=1.0,
    max_leverage=20,
)


def _first(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _from_precision(precision: Any) -> float | None:
    if precision is None:
        return None
    return 10 ** -int(precision)


def parse_contract(raw: dict[str, Any]) -> ContractSpec:
    tick = _first(raw, "tickSize") or _from_precision(_first(raw, "pricePrecision"))
    step = _first(raw, "stepSize") or _from_precision(_first(raw, "quantityPrecision"))
    min_qty = _first(raw, "minOrderQty", "tradeMinQuantity")
    min_notional = _first(raw, "minNotional", "tradeMinUSDT")
    max_leverage = _first(raw, "maxLeverage")
    if tick is None or step is None or min_qty is None:
        raise ValueError(f"Incomplete contract data for {raw.get('symbol')}")
    return ContractSpec(
        min_order_qty=float(min_qty),
        tick_size=float(tick),
        step_size=float(step),
        min_notional=float(min_notional) if min_notional is not None else FALLBACK_CONTRACT.min_notional,
        max_leverage=int(max_leverage) if max_leverage is not None else FALLBACK_CONTRACT.max_leverage,
    )


class MarketData:
    def __init__(self, client: ExchangeClient) -> None:
        self.client = client

    async def current_price(self, symbol: str) -> float:
        resp = await self.client.send("GET", PRICE_PATH, {"symbol": symbol})
        if resp.get("code") != 0:
            raise PriceUnavailable(
                f"Could not fetch price for {symbol}: {resp.get('msg')}",
                code=resp.get("code"),
                exchange_msg=resp.get("msg"),
            )
        data = resp.get("data")
        if isinstance(data, list):
            data = next((d for d in data if d.get("symbol") == symbol), data[0] if data else None)
        try:
            price = float(data["price"])
        except (KeyError, TypeError, ValueError) as exc:
            raise PriceUnavailable(f"Malformed price payload for {symbol}: {data!r}") from exc
        if price <= 0:
            raise PriceUnavailable(f"Non-positive price for {symbol}: {price}")
        return price

    async def server_time(self) -> dict[str, Any]:
        """Exchange clock, used as a connectivity check. Returns the raw response."""
        return await self.client.send("GET", SERVER_TIME_PATH)

    async def list_contracts(self) -> list[dict[str, Any]]:
        resp = await self.client.send("GET", CONTRACTS_PATH)
        if resp.get("code") != 0 or not isinstance(resp.get("data"), list):
            logger.warning("Contract list unavailable: {}", resp.get("msg"))
            return []
        return resp["data"]

    async def contract_spec(self, symbol: str) -> ContractSpec:
        # Fetched per order on purpose: BingX changes tick sizes without notice.
        try:
            contracts = await self.list_contracts()
            raw = next((c for c in contracts if c.get("symbol") == symbol), None)
            if raw is None:
                raise LookupError(f"Contract {symbol} not listed")
            return parse_contract(raw)
        except (LookupError, ValueError, TypeError) as exc:
            logger.warning("Using fallback contract spec for {}: {}", symbol, exc)
            return FALLBACK_CONTRACT

    async def usdt_balance(self) -> float:
        resp = await self.client.send("GET", BALANCE_PATH, {})
        if resp.get("code") != 0:
            logger.warning("Balance query failed: {}", resp.get("msg"))
            return 0.0
        try:
            return float(resp["data"]["balance"]["balance"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Malformed balance payload: {}", resp.get("data"))
            return 0.0
