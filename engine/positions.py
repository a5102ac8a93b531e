from __future__ import annotations

from typing import Any, Iterable

from loguru import logger

from adapters.base import ExchangeClient
from engine.models import PROTECTIVE_ORDER_TYPES, PositionSnapshot, ProtectiveOrder
from engine.rounding import normalize_symbol


POSITIONS_PATH = "/openApi/swap/v2/user/positions"
OPEN_ORDERS_PATH = "/openApi/swap/v2/trade/openOrders"


def _as_list(data: Any, key: str | None = None) -> list[dict[str, Any]]:
    if key and isinstance(data, dict) and isinstance(data.get(key), list):
        data = data[key]
    if isinstance(data, list):
        return [d for d in data if isinstance(d, dict)]
    if isinstance(data, dict):
        return [data]
    return []


def _number(raw: dict[str, Any], *keys: str) -> float | None:
    for key in keys:
        if raw.get(key) not in (None, ""):
            try:
                return float(raw[key])
            except (TypeError, ValueError):
                continue
    return None


def parse_position(raw: dict[str, Any], symbol: str) -> PositionSnapshot | None:
    amount = _number(raw, "positionAmt", "size", "positionSize")
    if not amount:
        return None
    side = str(raw.get("positionSide") or raw.get("side") or "").upper()
    if side not in ("LONG", "SHORT"):
        # one-way mode reports BOTH; the sign carries the direction
        side = "LONG" if amount > 0 else "SHORT"
    size = abs(amount)
    available = _number(raw, "availableAmt", "availableSize")
    available = size if available is None else min(abs(available), size)
    return PositionSnapshot(
        symbol=normalize_symbol(raw.get("symbol") or symbol),
        side=side,
        size=size,
        available_size=available,
        entry_price=_number(raw, "avgPrice", "entryPrice", "averagePrice") or 0.0,
    )


class PositionInspector:
    def __init__(self, client: ExchangeClient) -> None:
        self.client = client

    async def open_positions(self, symbol: str) -> list[PositionSnapshot]:
        resp = await self.client.send("GET", POSITIONS_PATH, {"symbol": symbol})
        if resp.get("code") != 0:
            logger.warning("Position query for {} failed: {}", symbol, resp.get("msg"))
            return []
        positions = []
        for raw in _as_list(resp.get("data"), "positions"):
            if raw.get("symbol") and normalize_symbol(raw["symbol"]) != symbol:
                continue
            snapshot = parse_position(raw, symbol)
            if snapshot:
                positions.append(snapshot)
        return positions

    async def position_details(self, symbol: str, side: str) -> PositionSnapshot | None:
        for position in await self.open_positions(symbol):
            if position.side == side:
                return position
        return None

    async def existing_protective_orders(self, symbol: str) -> list[ProtectiveOrder]:
        resp = await self.client.send("GET", OPEN_ORDERS_PATH, {"symbol": symbol})
        if resp.get("code") != 0:
            logger.warning("Open orders query for {} failed: {}", symbol, resp.get("msg"))
            return []
        orders = []
        for raw in _as_list(resp.get("data"), "orders"):
            if raw.get("type") not in PROTECTIVE_ORDER_TYPES:
                continue
            orders.append(
                ProtectiveOrder(
                    order_id=str(raw.get("orderId")),
                    type=raw["type"],
                    stop_price=_number(raw, "stopPrice") or 0.0,
                    symbol=raw.get("symbol") or symbol,
                )
            )
        return orders


def implied_percents(orders: Iterable[ProtectiveOrder], entry_price: float) -> tuple[float | None, float | None]:
    """Recover TP/SL distances (in percent of entry) from live protective orders.

    When several orders of one kind exist the last one wins.
    """
    if entry_price <= 0:
        return None, None
    tp_percent = None
    sl_percent = None
    for order in orders:
        if order.stop_price <= 0:
            continue
        distance = abs(order.stop_price - entry_price) / entry_price * 100.0
        if order.is_take_profit:
            tp_percent = distance
        elif order.is_stop_loss:
            sl_percent = distance
    return tp_percent, sl_percent
