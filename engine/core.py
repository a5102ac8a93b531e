from __future__ import annotations

from typing import Any, Literal

from loguru import logger

from adapters.base import ExchangeClient
from engine.errors import (
    InsufficientNotional,
    InsufficientQuantity,
    OrderRejected,
    PositionNotFound,
    SettlementTimeout,
    TradingError,
    ValidationError,
)
from engine.market import MarketData
from engine.models import (
    ContractSpec,
    OrchestrationResult,
    OrderState,
    PositionSnapshot,
    ProtectionSummary,
    ProtectiveOrder,
    Signal,
)
from engine.positions import PositionInspector, implied_percents
from engine.rounding import format_to_tick, normalize_symbol, round_to_tick
from services.config_service import RuntimeConfig
from services.scheduler import gather_outcomes, poll_until, sleep_for


ORDER_PATH = "/openApi/swap/v2/trade/order"
LEVERAGE_PATH = "/openApi/swap/v2/trade/leverage"
CLOSE_ALL_PATH = "/openApi/swap/v2/trade/closeAllPositions"

MIN_LEVERAGE = 1
MAX_LEVERAGE = 125

ProtectionKind = Literal["TP", "SL"]


def clamp_leverage(leverage: float) -> float:
    return max(MIN_LEVERAGE, min(MAX_LEVERAGE, float(leverage)))


def protective_stop_price(
    entry_price: float,
    position_side: str,
    kind: ProtectionKind,
    percent: float,
    tick_size: float,
) -> float:
    # TP moves with the position, SL against it; shorts mirror longs.
    favorable = 1.0 if position_side == "LONG" else -1.0
    direction = favorable if kind == "TP" else -favorable
    return round_to_tick(entry_price * (1.0 + direction * percent / 100.0), tick_size)


class OrderOrchestrator:
    def __init__(self, client: ExchangeClient, config: RuntimeConfig | None = None) -> None:
        self.client = client
        self.config = config or RuntimeConfig()
        self.market = MarketData(client)
        self.positions = PositionInspector(client)

    async def place_order(self, signal: Signal) -> OrchestrationResult:
        result = OrchestrationResult(
            symbol=normalize_symbol(signal.symbol),
            side=signal.position_side,
            state=OrderState.RESOLVING_CONTEXT,
        )
        return await self._run(result, self._entry_flow(signal, result))

    async def modify_position_tpsl(self, signal: Signal) -> OrchestrationResult:
        if signal.tp_percent is None and signal.sl_percent is None:
            raise ValidationError("Either tp_percent or sl_percent is required to modify TP/SL")
        result = OrchestrationResult(
            symbol=normalize_symbol(signal.symbol),
            side=signal.position_side,
            state=OrderState.RESOLVING_CONTEXT,
        )
        return await self._run(result, self._modify_flow(signal, result))

    async def close_all_positions(self, symbol: str) -> dict[str, Any]:
        symbol = normalize_symbol(symbol)
        resp = await self.client.send("POST", CLOSE_ALL_PATH, {"symbol": symbol})
        if resp.get("code") == 0:
            logger.info("Closed all positions for {}", symbol)
        else:
            logger.warning("Close all positions for {} failed: {}", symbol, resp.get("msg"))
        return resp

    async def set_leverage(self, symbol: str, leverage: float, position_side: str) -> dict[str, Any]:
        leverage = clamp_leverage(leverage)
        payload = {"symbol": symbol, "side": position_side, "leverage": int(leverage)}
        resp = await self.client.send("POST", LEVERAGE_PATH, payload)
        if resp.get("code") == 0:
            logger.info("Leverage {}x set for {} ({})", int(leverage), symbol, position_side)
        else:
            logger.warning("Leverage update for {} not accepted: {}", symbol, resp.get("msg"))
        return resp

    async def _run(self, result: OrchestrationResult, flow) -> OrchestrationResult:
        try:
            await flow
        except TradingError as exc:
            exc.state = result.state
            logger.error("{} {} failed during {}: {}", result.symbol, result.side, result.state.value, exc)
            result.state = OrderState.FAILED
            raise
        result.state = OrderState.DONE
        return result

    def _advance(self, result: OrchestrationResult, state: OrderState) -> None:
        result.state = state
        logger.info("{} {} -> {}", result.symbol, result.side, state.value)

    async def _entry_flow(self, signal: Signal, result: OrchestrationResult) -> None:
        symbol = result.symbol
        position_side = result.side
        leverage = clamp_leverage(signal.leverage or self.config.default_leverage)
        usdt_amount = signal.usdt_amount or self.config.default_usdt_amount
        result.leverage = leverage
        logger.info("{} | {} | {} USDT @ {}x", symbol, position_side, usdt_amount, leverage)

        contract_out, price_out, positions_out = await gather_outcomes(
            self.market.contract_spec(symbol),
            self.market.current_price(symbol),
            self.positions.open_positions(symbol),
        )
        for outcome in (price_out, contract_out, positions_out):
            if not outcome.ok:
                raise outcome.error
        contract: ContractSpec = contract_out.value
        market_price: float = price_out.value
        existing = next((p for p in positions_out.value if p.side == position_side), None)
        opposite = next((p for p in positions_out.value if p.side != position_side), None)
        if opposite:
            message = f"Opposite {opposite.side} position of {opposite.size} open on {symbol}; not hedged"
            logger.warning(message)
            result.opposite_position = opposite
            result.warnings.append(message)
        if leverage > contract.max_leverage:
            result.warnings.append(f"Leverage {leverage}x above contract max {contract.max_leverage}x")
        logger.info(
            "Market {}: price={} minQty={} step={} tick={}",
            symbol, market_price, contract.min_order_qty, contract.step_size, contract.tick_size,
        )

        self._advance(result, OrderState.SIZING)
        notional = usdt_amount * leverage
        if notional < contract.min_notional:
            raise InsufficientNotional(
                f"Notional {notional} USDT below contract minimum {contract.min_notional} for {symbol}"
            )
        quantity = round_to_tick(notional / market_price, contract.step_size)
        if quantity < contract.min_order_qty:
            raise InsufficientQuantity(
                f"Quantity {quantity} below contract minimum {contract.min_order_qty} for {symbol}"
            )
        result.quantity = quantity

        self._advance(result, OrderState.PLACING_MAIN)
        await self.set_leverage(symbol, leverage, position_side)
        payload = {
            "symbol": symbol,
            "side": signal.side,
            "positionSide": position_side,
            "type": signal.order_type,
            "quantity": format_to_tick(quantity, contract.step_size),
        }
        order_resp = await self.client.send("POST", ORDER_PATH, payload)
        if order_resp.get("code") != 0:
            raise OrderRejected(
                f"Main order rejected for {symbol}: {order_resp.get('msg')}",
                code=order_resp.get("code"),
                exchange_msg=order_resp.get("msg"),
            )
        result.main_order = order_resp
        logger.info("Main order executed for {}: {}", symbol, order_resp.get("data"))

        tp_percent = signal.tp_percent
        sl_percent = signal.sl_percent
        summary = ProtectionSummary()
        if existing:
            result.reentry = True
            self._advance(result, OrderState.RECONCILING_REENTRY)
            logger.info("Re-entry on {}: previous {} @ {}", symbol, existing.size, existing.entry_price)
            orders = await self.positions.existing_protective_orders(symbol)
            inherited_tp, inherited_sl = implied_percents(orders, existing.entry_price)
            if tp_percent is None:
                tp_percent = inherited_tp
            if sl_percent is None:
                sl_percent = inherited_sl
            await self._cancel_orders(symbol, orders, summary)
            await sleep_for(self.config.settlement_delay)

        self._advance(result, OrderState.AWAITING_SETTLEMENT)
        previous_size = existing.size if existing else 0.0
        position = await self._await_settlement(symbol, position_side, previous_size)
        result.final_position = position

        if tp_percent is None and sl_percent is None:
            logger.info("No TP/SL configured for {}", symbol)
            return
        self._advance(result, OrderState.CONFIGURING_PROTECTION)
        summary.tp_percent = tp_percent
        summary.sl_percent = sl_percent
        await self._create_protection(position, contract, tp_percent, sl_percent, summary)
        result.summary = summary

    async def _modify_flow(self, signal: Signal, result: OrchestrationResult) -> None:
        symbol = result.symbol
        position = await self.positions.position_details(symbol, result.side)
        if position is None:
            raise PositionNotFound(f"No open {result.side} position for {symbol}")
        result.final_position = position

        self._advance(result, OrderState.RECONCILING_REENTRY)
        orders_out, contract_out = await gather_outcomes(
            self.positions.existing_protective_orders(symbol),
            self.market.contract_spec(symbol),
        )
        for outcome in (orders_out, contract_out):
            if not outcome.ok:
                raise outcome.error
        summary = ProtectionSummary(tp_percent=signal.tp_percent, sl_percent=signal.sl_percent)
        await self._cancel_orders(symbol, orders_out.value, summary)
        await sleep_for(self.config.settlement_delay)

        self._advance(result, OrderState.CONFIGURING_PROTECTION)
        await self._create_protection(position, contract_out.value, signal.tp_percent, signal.sl_percent, summary)
        result.summary = summary

    async def _await_settlement(self, symbol: str, position_side: str, previous_size: float) -> PositionSnapshot:
        def settled(position: PositionSnapshot | None) -> bool:
            if position is None:
                return False
            return position.size > previous_size and position.fully_available

        position, attempts = await poll_until(
            lambda: self.positions.position_details(symbol, position_side),
            settled,
            attempts=self.config.max_poll_attempts,
            interval=self.config.poll_interval,
        )
        if position is None:
            raise SettlementTimeout(
                f"{symbol} {position_side} position not settled after {attempts} checks; verify it on the exchange"
            )
        logger.info(
            "Position confirmed on attempt {}: size={} available={} entry={}",
            attempts, position.size, position.available_size, position.entry_price,
        )
        return position

    async def _cancel_orders(self, symbol: str, orders: list[ProtectiveOrder], summary: ProtectionSummary) -> None:
        if not orders:
            return
        logger.info("Cancelling {} protective orders on {}", len(orders), symbol)
        outcomes = await gather_outcomes(
            *(self.client.send("DELETE", ORDER_PATH, {"symbol": symbol, "orderId": o.order_id}) for o in orders)
        )
        for order, outcome in zip(orders, outcomes):
            resp = outcome.value or {}
            if outcome.ok and resp.get("code") == 0:
                summary.cancelled.append(order.order_id)
                continue
            reason = outcome.error if not outcome.ok else resp.get("msg")
            logger.warning("Cancel {} {} on {} failed: {}", order.type, order.order_id, symbol, reason)
            summary.cancel_failures.append(order.order_id)
            summary.errors.append(f"cancel {order.order_id}: {reason}")

    async def _create_protection(
        self,
        position: PositionSnapshot,
        contract: ContractSpec,
        tp_percent: float | None,
        sl_percent: float | None,
        summary: ProtectionSummary,
    ) -> None:
        legs: list[tuple[ProtectionKind, float]] = []
        if tp_percent is not None:
            legs.append(("TP", tp_percent))
        if sl_percent is not None:
            legs.append(("SL", sl_percent))
        outcomes = await gather_outcomes(
            *(self._submit_protective(position, contract, kind, percent) for kind, percent in legs)
        )
        for (kind, _), outcome in zip(legs, outcomes):
            resp = outcome.value or {}
            ok = outcome.ok and resp.get("code") == 0
            if kind == "TP":
                summary.final_tp_status = ok
                summary.tp_order = resp or None
            else:
                summary.final_sl_status = ok
                summary.sl_order = resp or None
            if not ok:
                reason = outcome.error if not outcome.ok else resp.get("msg")
                logger.warning("{} creation on {} failed: {}", kind, position.symbol, reason)
                summary.errors.append(f"{kind}: {reason}")
        # Either leg succeeding counts as success; callers relying on both must
        # check the per-leg statuses.
        summary.main_success = summary.final_tp_status or summary.final_sl_status

    async def _submit_protective(
        self,
        position: PositionSnapshot,
        contract: ContractSpec,
        kind: ProtectionKind,
        percent: float,
    ) -> dict[str, Any]:
        stop_price = protective_stop_price(position.entry_price, position.side, kind, percent, contract.tick_size)
        payload = {
            "symbol": position.symbol,
            "side": "SELL" if position.side == "LONG" else "BUY",
            "positionSide": position.side,
            "type": "TAKE_PROFIT_MARKET" if kind == "TP" else "STOP_MARKET",
            "quantity": format_to_tick(position.size, contract.step_size),
            "stopPrice": format_to_tick(stop_price, contract.tick_size),
            "workingType": "MARK_PRICE",
        }
        logger.info("{} {}% on {} {} -> stop {}", kind, percent, position.symbol, position.side, payload["stopPrice"])
        return await self.client.send("POST", ORDER_PATH, payload)
