from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal


PROTECTIVE_ORDER_TYPES = ("TAKE_PROFIT_MARKET", "STOP_MARKET", "TAKE_PROFIT", "STOP")
TAKE_PROFIT_TYPES = ("TAKE_PROFIT_MARKET", "TAKE_PROFIT")
STOP_LOSS_TYPES = ("STOP_MARKET", "STOP")


class OrderState(str, Enum):
    RESOLVING_CONTEXT = "RESOLVING_CONTEXT"
    SIZING = "SIZING"
    PLACING_MAIN = "PLACING_MAIN"
    RECONCILING_REENTRY = "RECONCILING_REENTRY"
    AWAITING_SETTLEMENT = "AWAITING_SETTLEMENT"
    CONFIGURING_PROTECTION = "CONFIGURING_PROTECTION"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Signal:
    symbol: str
    side: Literal["BUY", "SELL"]
    leverage: float | None = None
    usdt_amount: float | None = None
    tp_percent: float | None = None
    sl_percent: float | None = None
    order_type: str = "MARKET"

    @property
    def position_side(self) -> Literal["LONG", "SHORT"]:
        return "LONG" if self.side == "BUY" else "SHORT"


@dataclass(frozen=True)
class ContractSpec:
    min_order_qty: float
    tick_size: float
    step_size: float
    min_notional: float
    max_leverage: int


@dataclass
class PositionSnapshot:
    symbol: str
    side: Literal["LONG", "SHORT"]
    size: float
    available_size: float
    entry_price: float

    @property
    def fully_available(self) -> bool:
        return abs(self.size - self.available_size) <= 1e-9 * max(1.0, self.size)


@dataclass(frozen=True)
class ProtectiveOrder:
    order_id: str
    type: str
    stop_price: float
    symbol: str

    @property
    def is_take_profit(self) -> bool:
        return self.type in TAKE_PROFIT_TYPES

    @property
    def is_stop_loss(self) -> bool:
        return self.type in STOP_LOSS_TYPES


@dataclass
class ProtectionSummary:
    main_success: bool = False
    final_tp_status: bool = False
    final_sl_status: bool = False
    tp_percent: float | None = None
    sl_percent: float | None = None
    tp_order: dict[str, Any] | None = None
    sl_order: dict[str, Any] | None = None
    cancelled: list[str] = field(default_factory=list)
    cancel_failures: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def error(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None


@dataclass
class OrchestrationResult:
    symbol: str
    side: Literal["LONG", "SHORT"]
    state: OrderState
    main_order: dict[str, Any] | None = None
    final_position: PositionSnapshot | None = None
    summary: ProtectionSummary | None = None
    quantity: float | None = None
    leverage: float | None = None
    reentry: bool = False
    opposite_position: PositionSnapshot | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def error(self) -> str | None:
        return self.summary.error if self.summary else None
