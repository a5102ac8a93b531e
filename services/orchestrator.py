from __future__ import annotations

from dataclasses import asdict
from typing import Any, Mapping

from loguru import logger

from adapters.base import ExchangeClient
from adapters.bingx_client import BingXClient
from adapters.paper import PaperExchange
from engine.core import OrderOrchestrator
from engine.errors import TradingError, ValidationError
from engine.idempotency import SignalDeduplicator
from engine.models import OrchestrationResult, OrderState, Signal
from engine.rounding import normalize_symbol
from engine.state import SignalHistory, SignalRecord
from services.config_service import BotSettings, ConfigService
from services.crypto import resolve_api_secret
from services.notifier import Notifier


ENTRY_ACTIONS = {"", "ENTRY", "OPEN", "BUY", "SELL"}
MODIFY_ACTIONS = {"MODIFY", "TPSL", "UPDATE_TPSL"}
CLOSE_ACTIONS = {"EXIT", "CLOSE", "CLOSE_ALL"}

# Once the main order is accepted a later failure still leaves a live position.
_POST_ORDER_STATES = {
    OrderState.RECONCILING_REENTRY,
    OrderState.AWAITING_SETTLEMENT,
    OrderState.CONFIGURING_PROTECTION,
}


def _optional_float(body: Mapping[str, Any], *keys: str) -> float | None:
    for key in keys:
        value = body.get(key)
        if value in (None, ""):
            continue
        try:
            return float(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid numeric value for {key}: {value!r}") from exc
    return None


def parse_signal(body: Mapping[str, Any]) -> Signal:
    symbol = str(body.get("symbol") or "").strip()
    side = str(body.get("side") or "").strip().upper()
    if not symbol or not side:
        raise ValidationError("Missing required fields: symbol and side")
    if side not in ("BUY", "SELL"):
        raise ValidationError(f"Invalid side: {side}")
    return Signal(
        symbol=symbol,
        side=side,
        leverage=_optional_float(body, "leverage"),
        usdt_amount=_optional_float(body, "usdtAmount", "usdt_amount", "qty"),
        tp_percent=_optional_float(body, "tpPercent", "tp_percent"),
        sl_percent=_optional_float(body, "slPercent", "sl_percent"),
        order_type=str(body.get("orderType") or body.get("type") or "MARKET").upper(),
    )


def result_to_dict(result: OrchestrationResult) -> dict[str, Any]:
    data = asdict(result)
    data["state"] = result.state.value
    data["error"] = result.error
    return data


def _close_record(base: dict[str, Any], resp: dict[str, Any]) -> SignalRecord:
    ok = resp.get("code") == 0
    return SignalRecord(
        **base,
        status="closed" if ok else "failed",
        trading_executed=ok,
        detail=None if ok else resp.get("msg"),
        result=resp,
    )


def build_exchange(
settings: BotSettings) -> ExchangeClient:
    if settings.MODE.lower() == "paper":
        market_client = BingXClient(host=settings.BINGX_HOST, timeout=settings.HTTP_TIMEOUT)
        return PaperExchange(data_provider=market_client, balance=settings.PAPER_BALANCE)
    if settings.MODE.lower() != "live":
        raise ValueError(f"Unknown mode: {settings.MODE}")
    if not settings.BINGX_API_KEY or not settings.BINGX_API_SECRET:
        raise RuntimeError("BingX API key/secret missing for live mode")
    return BingXClient(
        api_key=settings.BINGX_API_KEY,
        api_secret=resolve_api_secret(settings),
        host=settings.BINGX_HOST,
        timeout=settings.HTTP_TIMEOUT,
        max_connections=settings.HTTP_MAX_CONNECTIONS,
        max_keepalive=settings.HTTP_MAX_KEEPALIVE,
    )


class SignalProcessor:
    def __init__(
        self,
        orchestrator: OrderOrchestrator,
        settings: BotSettings,
        notifier: Notifier | None = None,
        history: SignalHistory | None = None,
        dedup: SignalDeduplicator | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.settings = settings
        self.notifier = notifier or Notifier()
        self.history = history or SignalHistory(settings.HISTORY_SIZE)
        self.dedup = dedup or SignalDeduplicator(ttl=settings.DEDUP_TTL)

    @classmethod
    def from_settings(cls, settings: BotSettings, notifier: Notifier | None = None) -> "SignalProcessor":
        config = ConfigService(settings).load()
        orchestrator = OrderOrchestrator(build_exchange(settings), config)
        return cls(orchestrator, settings, notifier=notifier)

    def is_authorized(self, body: Mapping[str, Any]) -> bool:
        expected = self.settings.WEBHOOK_SECRET
        if not expected:
            return True
        return (body.get("webhook_secret") or body.get("secret")) == expected

    async def handle(self, body: Mapping[str, Any]) -> SignalRecord:
        record = await self._process(body)
        self.history.append(record)
        logger.info(
            "Signal {} {} {} -> {} (executed={})",
            record.action, record.symbol, record.side, record.status, record.trading_executed,
        )
        await self.notifier.notify_record(record)
        return record

    async def _process(self, body: Mapping[str, Any]) -> SignalRecord:
        action = str(body.get("action") or "").strip().upper()
        symbol = body.get("symbol")
        side = str(body.get("side") or "").upper() or None
        base = {"symbol": symbol, "side": side, "action": action or None, "strategy": body.get("strategy")}

        if not self.is_authorized(body):
            return SignalRecord(**base, status="unauthorized", trading_executed=False, detail="webhook secret mismatch")
        if action not in ENTRY_ACTIONS | MODIFY_ACTIONS | CLOSE_ACTIONS:
            return SignalRecord(**base, status="rejected", trading_executed=False, detail=f"Unknown action: {action}")

        try:
            if action in CLOSE_ACTIONS:
                if not symbol:
                    raise ValidationError("Missing required field: symbol")
                signal = None
                key = SignalDeduplicator.fingerprint(
                    normalize_symbol(str(symbol)), side or "", action, body.get("strategy")
                )
            else:
                signal = parse_signal(body)
                key = SignalDeduplicator.fingerprint(
                    normalize_symbol(signal.symbol),
                    signal.side,
                    action,
                    signal.leverage,
                    signal.usdt_amount,
                    signal.tp_percent,
                    signal.sl_percent,
                    signal.order_type,
                    body.get("strategy"),
                )
        except ValidationError as exc:
            return SignalRecord(**base, status="rejected", trading_executed=False, detail=str(exc))

        if not self.dedup.check_and_add(key):
            logger.info("Duplicate signal dropped: {}", key)
            return SignalRecord(**base, status="duplicate", trading_executed=False)

        try:
            if signal is None:
                resp = await self.orchestrator.close_all_positions(str(symbol))
                return _close_record(base, resp)
            if action in MODIFY_ACTIONS:
                result = await self.orchestrator.modify_position_tpsl(signal)
                status = "updated" if result.summary and result.summary.main_success else "partial"
                return SignalRecord(
                    **base, status=status, trading_executed=True, detail=result.error, result=result_to_dict(result)
                )
            result = await self.orchestrator.place_order(signal)
            detail = "; ".join(filter(None, [*result.warnings, result.error])) or None
            return SignalRecord(**base, status="executed", trading_executed=True, detail=detail, result=result_to_dict(result))
        except TradingError as exc:
            executed = exc.state in _POST_ORDER_STATES and action in ENTRY_ACTIONS
            return SignalRecord(
                **base,
                status="failed",
                trading_executed=executed,
                detail=f"{exc.__class__.__name__}: {exc}",
            )
        except Exception as exc:
            logger.exception("Unexpected error handling signal {}: {}", key, exc)
            return SignalRecord(**base, status="error", trading_executed=False, detail=str(exc))

    async def close_position(self, symbol: str) -> SignalRecord:
        """Manual close from the dashboard; recorded like a webhook close."""
        resp = await self.orchestrator.close_all_positions(symbol)
        base = {"symbol": symbol, "side": None, "action": "CLOSE", "strategy": "manual"}
        record = _close_record(base, resp)
        self.history.append(record)
        await self.notifier.notify_record(record)
        return record

    async def exchange_status(self) -> dict[str, Any]:
        resp = await self.orchestrator.market.server_time()
        if resp.get("code") != 0:
            logger.warning("BingX connectivity check failed: {}", resp.get("msg"))
            return {"connected": False, "server_time": None, "error": resp.get("msg")}
        data = resp.get("data")
        server_time = data.get("serverTime") if isinstance(data, dict) else data
        return {"connected": True, "server_time": server_time, "error": None}

    async def balance(self) -> float:
        return await self.orchestrator.market.usdt_balance()

    async def close(self) -> None:
        await self.orchestrator.client.close()
