from __future__ import annotations

from engine.models import OrderState


class TradingError(Exception):
    state: OrderState | None = None


class ValidationError(TradingError):
    pass


class ExchangeRejected(TradingError):
    def __init__(self, message: str, code: int | None = None, exchange_msg: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.exchange_msg = exchange_msg


class OrderRejected(ExchangeRejected):
    pass


class PriceUnavailable(ExchangeRejected):
    pass


class InsufficientNotional(TradingError):
    pass


class InsufficientQuantity(TradingError):
    pass


class PositionNotFound(TradingError):
    pass


class SettlementTimeout(TradingError):
    pass
