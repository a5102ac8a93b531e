from __future__ import annotations

import itertools
import time
from typing import Any, Mapping

from loguru import logger

from adapters.base import ExchangeClient


_PROTECTIVE = ("TAKE_PROFIT_MARKET", "STOP_MARKET", "TAKE_PROFIT", "STOP")


class PaperExchange(ExchangeClient):
    """In-memory stand-in for the BingX swap API.

    Quotes and contract metadata come from ``data_provider`` (usually an
    unauthenticated live client) unless static ``quotes``/``contracts`` are
    given. Market orders fill at the quote; protective orders lock the
    position's available size until cancelled.
    """

    def __init__(
        self,
        data_provider: ExchangeClient | None = None,
        quotes: dict[str, float] | None = None,
        contracts: list[dict[str, Any]] | None = None,
        balance: float = 1000.0,
    ) -> None:
        self.data_provider = data_provider
        self.quotes = dict(quotes or {})
        self.contracts = contracts
        self.balance = balance
        self.leverage: dict[tuple[str, str], int] = {}
        self._positions: dict[tuple[str, str], dict[str, float]] = {}
        self._orders: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(int(time.time() * 1000) * 1_000_000)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    async def send(self, method: str, path: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any]:
        params = dict(payload or {})
        method = method.upper()
        self.calls.append((method, path, params))
        route = (method, path.rsplit("/", 1)[-1])
        if route == ("GET", "price"):
            return await self._price(params)
        if route == ("GET", "contracts"):
            if self.contracts is not None:
                return {"code": 0, "data": self.contracts}
            return await self._delegate(method, path, params)
        if route == ("POST", "leverage"):
            self.leverage[(params["symbol"], params["side"])] = int(params["leverage"])
            return {"code": 0, "data": {"leverage": int(params["leverage"]), "symbol": params["symbol"]}}
        if route == ("POST", "order"):
            return await self._order(params)
        if route == ("DELETE", "order"):
            return self._cancel(params)
        if route == ("GET", "positions"):
            return {"code": 0, "data": self._position_rows(params.get("symbol"))}
        if route == ("GET", "openOrders"):
            orders = [o for o in self._orders.values() if o["symbol"] == params.get("symbol", o["symbol"])]
            return {"code": 0, "data": {"orders": orders}}
        if route == ("GET", "balance"):
            return {"code": 0, "data": {"balance": {"asset": "USDT", "balance": f"{self.balance:.4f}"}}}
        if route == ("POST", "closeAllPositions"):
            return self._close_all(params.get("symbol"))
        if route == ("GET", "time"):
            if self.data_provider:
                return await self._delegate(method, path, params)
            return {"code": 0, "data": {"serverTime": int(time.time() * 1000)}}
        return {"code": -1, "msg": f"Paper exchange does not support {method} {path}"}

    async def close(self) -> None:
        if self.data_provider:
            await self.data_provider.close()

    async def _delegate(self, method: str, path: str, params: dict[str, Any]) -> dict[str, Any]:
        if not self.data_provider:
            return {"code": -1, "msg": f"No market data for {path}"}
        return await self.data_provider.send(method, path, params)

    async def _price(self, params: dict[str, Any]) -> dict[str, Any]:
        symbol = params.get("symbol", "")
        if symbol in self.quotes:
            return {"code": 0, "data": {"symbol": symbol, "price": str(self.quotes[symbol])}}
        return await self._delegate("GET", "/openApi/swap/v2/quote/price", params)

    async def _fill_price(self, symbol: str) -> float | None:
        resp = await self._price({"symbol": symbol})
        if resp.get("code") != 0:
            return None
        return float(resp["data"]["price"])

    async def _order(self, params: dict[str, Any]) -> dict[str, Any]:
        symbol = params.get("symbol")
        position_side = params.get("positionSide", "LONG")
        order_type = params.get("type", "MARKET")
        quantity = float(params.get("quantity", 0))
        if quantity <= 0:
            return {"code": 101204, "msg": "Invalid quantity"}
        order_id = str(next(self._ids))
        if order_type in _PROTECTIVE:
            self._orders[order_id] = {
                "orderId": order_id,
                "symbol": symbol,
                "side": params.get("side"),
                "positionSide": position_side,
                "type": order_type,
                "origQty": params.get("quantity"),
                "stopPrice": str(params.get("stopPrice")),
                "workingType": params.get("workingType", "MARK_PRICE"),
            }
            return {"code": 0, "data": {"order": self._orders[order_id]}}
        price = await self._fill_price(symbol)
        if price is None:
            return {"code": -1, "msg": f"No price for {symbol}"}
        opening = (params.get("side") == "BUY") == (position_side == "LONG")
        self._apply_fill(symbol, position_side, quantity if opening else -quantity, price)
        logger.info("Paper fill: {} {} {} @ {}", symbol, position_side, quantity, price)
        order = {
            "orderId": order_id,
            "symbol": symbol,
            "side": params.get("side"),
            "positionSide": position_side,
            "type": order_type,
            "quantity": params.get("quantity"),
            "avgPrice": str(price),
        }
        return {"code": 0, "data": {"order": order}}

    def _apply_fill(self, symbol: str, position_side: str, qty: float, price: float) -> None:
        key = (symbol, position_side)
        pos = self._positions.get(key)
        if not pos:
            if qty > 0:
                self._positions[key] = {"amt": qty, "avg": price}
            return
        new_amt = pos["amt"] + qty
        if new_amt <= 0:
            self._positions.pop(key, None)
            return
        if qty > 0:
            pos["avg"] = ((pos["avg"] * pos["amt"]) + (price * qty)) / new_amt
        pos["amt"] = new_amt

    def _cancel(self, params: dict[str, Any]) -> dict[str, Any]:
        order = self._orders.pop(str(params.get("orderId")), None)
        if not order:
            return {"code": 80018, "msg": f"order not exist: {params.get('orderId')}"}
        return {"code": 0, "data": {"order": order}}

    def _position_rows(self, symbol: str | None) -> list[dict[str, Any]]:
        rows = []
        for (pos_symbol, side), pos in self._positions.items():
            if symbol and pos_symbol != symbol:
                continue
            locked = sum(
                float(o["origQty"])
                for o in self._orders.values()
                if o["symbol"] == pos_symbol and o["positionSide"] == side
            )
            rows.append(
                {
                    "symbol": pos_symbol,
                    "positionSide": side,
                    "positionAmt": f"{pos['amt']:.8f}",
                    "availableAmt": f"{max(0.0, pos['amt'] - locked):.8f}",
                    "avgPrice": f"{pos['avg']:.8f}",
                    "leverage": self.leverage.get((pos_symbol, side), 1),
                }
            )
        return rows

    def _close_all(self, symbol: str | None) -> dict[str, Any]:
        closed = [key for key in self._positions if not symbol or key[0] == symbol]
        for key in closed:
            self._positions.pop(key)
        for order_id in [i for i, o in self._orders.items() if not symbol or o["symbol"] == symbol]:
            self._orders.pop(order_id)
        return {"code": 0, "msg": "", "data": {"success": [f"{s}:{side}" for s, side in closed], "failed": None}}
