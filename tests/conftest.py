from __future__ import annotations

from typing import Any, Callable, Mapping

import pytest

from adapters.base import ExchangeClient
from adapters.paper import PaperExchange
from services.config_service import RuntimeConfig


POSITIONS = "/openApi/swap/v2/user/positions"
OPEN_ORDERS = "/openApi/swap/v2/trade/openOrders"
CONTRACTS = "/openApi/swap/v2/quote/contracts"
PRICE = "/openApi/swap/v2/quote/price"
ORDER = "/openApi/swap/v2/trade/order"
LEVERAGE = "/openApi/swap/v2/trade/leverage"
BALANCE = "/openApi/swap/v2/user/balance"
CLOSE_ALL = "/openApi/swap/v2/trade/closeAllPositions"
SERVER_TIME = "/openApi/swap/v2/server/time"

DOLO_CONTRACT = {
    "symbol": "DOLO-USDT",
    "minOrderQty": 0.001,
    "tickSize": 0.00001,
    "stepSize": 0.001,
    "minNotional": 1,
    "maxLeverage": 20,
}

BTC_CONTRACT = {
    "symbol": "BTC-USDT",
    "minOrderQty": 0.0001,
    "tickSize": 0.1,
    "stepSize": 0.0001,
    "minNotional": 5,
    "maxLeverage": 125,
}


class FakeExchange(ExchangeClient):
    """Routes (method, path) to a canned response.

    A route may be a dict, a list consumed in order (the last entry repeats),
    or a callable receiving the request params.
    """

    def __init__(self, routes: dict[tuple[str, str], Any]) -> None:
        self.routes = routes
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    async def send(self, method: str, path: str, payload: Mapping[str, Any] | None = None) -> dict[str, Any]:
        params = dict(payload or {})
        self.calls.append((method, path, params))
        handler = self.routes.get((method, path))
        if handler is None:
            return {"code": -1, "msg": f"no route for {method} {path}"}
        if callable(handler):
            return handler(params)
        if isinstance(handler, list):
            return handler.pop(0) if len(handler) > 1 else handler[0]
        return handler

    def calls_to(self, method: str, path: str) -> list[dict[str, Any]]:
        return [params for m, p, params in self.calls if m == method and p == path]

    def index_of(self, method: str, path: str) -> int:
        return next(i for i, (m, p, _) in enumerate(self.calls) if m == method and p == path)


def accept_order(params: dict[str, Any]) -> dict[str, Any]:
    return {"code": 0, "data": {"order": {"orderId": "1953203874928615999", "type": params.get("type")}}}


@pytest.fixture
def fast_config() -> RuntimeConfig:
    return RuntimeConfig(settlement_delay=0, poll_interval=0, max_poll_attempts=3)


@pytest.fixture
def paper() -> PaperExchange:
    return PaperExchange(quotes={"BTC-USDT": 50000.0, "DOLO-USDT": 0.1512}, contracts=[BTC_CONTRACT, DOLO_CONTRACT])


@pytest.fixture
def make_fake() -> Callable[[dict[tuple[str, str], Any]], FakeExchange]:
    return FakeExchange
