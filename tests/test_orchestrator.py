import pytest

from conftest import (
    CONTRACTS,
    DOLO_CONTRACT,
    LEVERAGE,
    OPEN_ORDERS,
    ORDER,
    POSITIONS,
    PRICE,
    FakeExchange,
    accept_order,
)
from engine.core import OrderOrchestrator, clamp_leverage, protective_stop_price
from engine.errors import (
    InsufficientNotional,
    InsufficientQuantity,
    OrderRejected,
    PositionNotFound,
    SettlementTimeout,
    ValidationError,
)
from engine.models import OrderState, Signal
from engine.rounding import format_to_tick


def _position(size, available, entry, side="LONG"):
    return {
        "symbol": "DOLO-USDT",
        "positionSide": side,
        "positionAmt": str(size),
        "availableAmt": str(available),
        "avgPrice": str(entry),
    }


EXISTING_ORDERS = {
    "code": 0,
    "data": {
        "orders": [
            {"orderId": "1953203874928615424", "type": "STOP_MARKET", "stopPrice": "0.148830", "symbol": "DOLO-USDT"},
            {"orderId": "1953203874651791360", "type": "TAKE_PROFIT_MARKET", "stopPrice": "0.156460", "symbol": "DOLO-USDT"},
        ]
    },
}


def _modify_exchange(order_handler=accept_order, cancel_handler=None) -> FakeExchange:
    return FakeExchange(
        {
            ("GET", POSITIONS): {"code": 0, "data": [_position(13.2, 13.2, 0.152642)]},
            ("GET", OPEN_ORDERS): EXISTING_ORDERS,
            ("GET", CONTRACTS): {"code": 0, "data": [DOLO_CONTRACT]},
            ("DELETE", ORDER): cancel_handler or {"code": 0},
            ("POST", ORDER): order_handler,
        }
    )


def _reentry_exchange() -> FakeExchange:
    return FakeExchange(
        {
            ("GET", CONTRACTS): {"code": 0, "data": [DOLO_CONTRACT]},
            ("GET", PRICE): {"code": 0, "data": {"symbol": "DOLO-USDT", "price": "0.1512"}},
            ("GET", POSITIONS): [
                {"code": 0, "data": [_position(26.4, 0, 0.151115)]},
                {"code": 0, "data": [_position(39.6, 39.6, 0.151268)]},
            ],
            ("GET", OPEN_ORDERS): {
                "code": 0,
                "data": {
                    "orders": [
                        {"orderId": "123", "type": "TAKE_PROFIT_MARKET", "stopPrice": "0.155398"},
                        {"orderId": "456", "type": "STOP_MARKET", "stopPrice": "0.146832"},
                    ]
                },
            },
            ("POST", LEVERAGE): {"code": 0},
            ("POST", ORDER): accept_order,
            ("DELETE", ORDER): {"code": 0},
        }
    )


def test_protective_stop_price_directions():
    assert protective_stop_price(100.0, "LONG", "TP", 5, 0.01) == 105.0
    assert protective_stop_price(100.0, "LONG", "SL", 4, 0.01) == 96.0
    assert protective_stop_price(100.0, "SHORT", "TP", 5, 0.01) == 95.0
    assert protective_stop_price(100.0, "SHORT", "SL", 4, 0.01) == 104.0


def test_clamp_leverage():
    assert clamp_leverage(0) == 1
    assert clamp_leverage(200) == 125
    assert clamp_leverage(7) == 7


@pytest.mark.asyncio
async def test_modify_replaces_both_orders(fast_config):
    fake = _modify_exchange()
    signal = Signal(symbol="DOLO-USDT", side="BUY", tp_percent=5, sl_percent=4)
    result = await OrderOrchestrator(fake, fast_config).modify_position_tpsl(signal)

    assert result.summary.final_tp_status is True
    assert result.summary.final_sl_status is True
    assert result.summary.main_success is True
    assert result.error is None
    assert result.state == OrderState.DONE
    assert sorted(p["orderId"] for p in fake.calls_to("DELETE", ORDER)) == [
        "1953203874651791360",
        "1953203874928615424",
    ]
    created = {p["type"]: p for p in fake.calls_to("POST", ORDER)}
    assert created["TAKE_PROFIT_MARKET"]["stopPrice"] == "0.16027"
    assert created["STOP_MARKET"]["stopPrice"] == "0.14654"
    assert created["TAKE_PROFIT_MARKET"]["side"] == "SELL"
    assert created["TAKE_PROFIT_MARKET"]["quantity"] == "13.200"
    assert fake.index_of("DELETE", ORDER) < fake.index_of("POST", ORDER)


@pytest.mark.asyncio
async def test_modify_without_position_fails_before_cancelling(fast_config):
    fake = _modify_exchange()
    fake.routes[("GET", POSITIONS)] = {"code": 0, "data": []}
    with pytest.raises(PositionNotFound) as excinfo:
        await OrderOrchestrator(fake, fast_config).modify_position_tpsl(
            Signal(symbol="BTCUSDT", side="BUY", tp_percent=5, sl_percent=3)
        )
    assert excinfo.value.state == OrderState.RESOLVING_CONTEXT
    assert fake.calls_to("DELETE", ORDER) == []
    assert fake.calls_to("POST", ORDER) == []


@pytest.mark.asyncio
async def test_modify_requires_a_percentage(fast_config):
    fake = _modify_exchange()
    with pytest.raises(ValidationError):
        await OrderOrchestrator(fake, fast_config).modify_position_tpsl(Signal(symbol="DOLO-USDT", side="BUY"))
    assert fake.calls == []


@pytest.mark.asyncio
async def test_modify_tolerates_partial_failures(fast_config):
    def order_handler(params):
        if params["type"] == "STOP_MARKET":
            return {"code": 80001, "msg": "stop price invalid"}
        return accept_order(params)

    def cancel_handler(params):
        if params["orderId"] == "1953203874928615424":
            return {"code": 80018, "msg": "order not exist"}
        return {"code": 0}

    fake = _modify_exchange(order_handler=order_handler, cancel_handler=cancel_handler)
    result = await OrderOrchestrator(fake, fast_config).modify_position_tpsl(
        Signal(symbol="DOLO-USDT", side="BUY", tp_percent=5, sl_percent=4)
    )
    summary = result.summary
    assert summary.final_tp_status is True
    assert summary.final_sl_status is False
    assert summary.main_success is True
    assert summary.cancelled == ["1953203874651791360"]
    assert summary.cancel_failures == ["1953203874928615424"]
    assert "stop price invalid" in result.error
    assert "order not exist" in result.error


@pytest.mark.asyncio
async def test_reentry_inherits_existing_percentages(fast_config):
    fake = _reentry_exchange()
    result = await OrderOrchestrator(fake, fast_config).place_order(
        Signal(symbol="DOLOUSDT", side="BUY", leverage=2, usdt_amount=1)
    )

    assert result.reentry is True
    assert result.main_order["code"] == 0
    assert result.final_position.size == 39.6
    assert result.quantity == 13.228
    assert result.summary.tp_percent == pytest.approx(2.8342, abs=1e-3)
    assert result.summary.sl_percent == pytest.approx(2.8342, abs=1e-3)
    assert result.summary.main_success is True

    main, *protective = fake.calls_to("POST", ORDER)
    assert main == {"symbol": "DOLO-USDT", "side": "BUY", "positionSide": "LONG", "type": "MARKET", "quantity": "13.228"}
    tp = next(p for p in protective if p["type"] == "TAKE_PROFIT_MARKET")
    expected = protective_stop_price(0.151268, "LONG", "TP", result.summary.tp_percent, 0.00001)
    assert tp["stopPrice"] == format_to_tick(expected, 0.00001)
    assert tp["quantity"] == "39.600"
    assert fake.index_of("POST", LEVERAGE) < fake.index_of("POST", ORDER) < fake.index_of("DELETE", ORDER)
    assert len(fake.calls_to("DELETE", ORDER)) == 2


@pytest.mark.asyncio
async def test_reentry_explicit_percentages_override(fast_config):
    fake = _reentry_exchange()
    result = await OrderOrchestrator(fake, fast_config).place_order(
        Signal(symbol="DOLO-USDT", side="BUY", leverage=2, usdt_amount=1, tp_percent=5, sl_percent=6)
    )
    assert result.summary.tp_percent == 5
    assert result.summary.sl_percent == 6
    sl = next(p for p in fake.calls_to("POST", ORDER) if p["type"] == "STOP_MARKET")
    assert sl["stopPrice"] == format_to_tick(0.151268 * 0.94, 0.00001)


@pytest.mark.asyncio
async def test_fresh_entry_on_paper_exchange(fast_config, paper):
    result = await OrderOrchestrator(paper, fast_config).place_order(
        Signal(symbol="BTCUSDT", side="BUY", leverage=5, usdt_amount=10, tp_percent=3, sl_percent=2)
    )
    assert result.reentry is False
    assert result.quantity == 0.001
    assert result.final_position.size == pytest.approx(0.001)
    assert paper.leverage[("BTC-USDT", "LONG")] == 5
    orders = (await paper.send("GET", OPEN_ORDERS, {"symbol": "BTC-USDT"}))["data"]["orders"]
    stops = {o["type"]: o["stopPrice"] for o in orders}
    assert stops == {"TAKE_PROFIT_MARKET": "51500.0", "STOP_MARKET": "49000.0"}


@pytest.mark.asyncio
async def test_reentry_on_paper_exchange_keeps_levels(fast_config, paper):
    orchestrator = OrderOrchestrator(paper, fast_config)
    await orchestrator.place_order(Signal(symbol="BTCUSDT", side="BUY", leverage=5, usdt_amount=10, tp_percent=3, sl_percent=2))
    result = await orchestrator.place_order(Signal(symbol="BTCUSDT", side="BUY", leverage=5, usdt_amount=10))

    assert result.reentry is True
    assert result.final_position.size == pytest.approx(0.002)
    assert result.summary.tp_percent == pytest.approx(3.0)
    assert result.summary.sl_percent == pytest.approx(2.0)
    assert len(result.summary.cancelled) == 2
    orders = (await paper.send("GET", OPEN_ORDERS, {"symbol": "BTC-USDT"}))["data"]["orders"]
    assert len(orders) == 2


@pytest.mark.asyncio
async def test_entry_without_percentages_skips_protection(fast_config, paper):
    result = await OrderOrchestrator(paper, fast_config).place_order(Signal(symbol="BTCUSDT", side="SELL", usdt_amount=10))
    assert result.summary is None
    assert result.state == OrderState.DONE
    assert result.final_position.side == "SHORT"


@pytest.mark.asyncio
async def test_opposite_position_is_reported_not_hedged(fast_config, paper):
    orchestrator = OrderOrchestrator(paper, fast_config)
    await orchestrator.place_order(Signal(symbol="BTCUSDT", side="SELL", usdt_amount=10))
    result = await orchestrator.place_order(Signal(symbol="BTCUSDT", side="BUY", usdt_amount=10))
    assert result.reentry is False
    assert result.opposite_position.side == "SHORT"
    assert any("Opposite SHORT" in w for w in result.warnings)


@pytest.mark.asyncio
async def test_insufficient_notional(fast_config, paper):
    with pytest.raises(InsufficientNotional) as excinfo:
        await OrderOrchestrator(paper, fast_config).place_order(Signal(symbol="BTCUSDT", side="BUY", leverage=2, usdt_amount=1))
    assert excinfo.value.state == OrderState.SIZING
    assert not any(path.endswith("/trade/order") for _, path, _ in paper.calls)


@pytest.mark.asyncio
async def test_insufficient_quantity(fast_config):
    fake = FakeExchange(
        {
            ("GET", CONTRACTS): {"code": 0, "data": [dict(DOLO_CONTRACT, symbol="BTC-USDT")]},
            ("GET", PRICE): {"code": 0, "data": {"price": "50000"}},
            ("GET", POSITIONS): {"code": 0, "data": []},
        }
    )
    with pytest.raises(InsufficientQuantity):
        await OrderOrchestrator(fake, fast_config).place_order(Signal(symbol="BTCUSDT", side="BUY", leverage=2, usdt_amount=10))
    assert fake.calls_to("POST", ORDER) == []


@pytest.mark.asyncio
async def test_contract_fallback_still_sizes(fast_config):
    fake = FakeExchange(
        {
            ("GET", CONTRACTS): {"code": -1, "msg": "timeout"},
            ("GET", PRICE): {"code": 0, "data": {"price": "0.5"}},
            ("GET", POSITIONS): [{"code": 0, "data": []}, {"code": 0, "data": [_position(40, 40, 0.5)]}],
            ("POST", LEVERAGE): {"code": 0},
            ("POST", ORDER): accept_order,
        }
    )
    result = await OrderOrchestrator(fake, fast_config).place_order(
        Signal(symbol="DOLO-USDT", side="BUY", leverage=2, usdt_amount=10)
    )
    assert result.quantity == 40.0
    assert fake.calls_to("POST", ORDER)[0]["quantity"] == "40.000"


@pytest.mark.asyncio
async def test_leverage_rejection_is_not_fatal(fast_config):
    fake = _reentry_exchange()
    fake.routes[("POST", LEVERAGE)] = {"code": 109400, "msg": "leverage not allowed"}
    result = await OrderOrchestrator(fake, fast_config).place_order(
        Signal(symbol="DOLO-USDT", side="BUY", leverage=2, usdt_amount=1)
    )
    assert result.state == OrderState.DONE


@pytest.mark.asyncio
async def test_main_order_rejected(fast_config):
    fake = _reentry_exchange()
    fake.routes[("POST", ORDER)] = {"code": 101204, "msg": "Insufficient margin"}
    with pytest.raises(OrderRejected) as excinfo:
        await OrderOrchestrator(fake, fast_config).place_order(Signal(symbol="DOLO-USDT", side="BUY", leverage=2, usdt_amount=1))
    assert excinfo.value.exchange_msg == "Insufficient margin"
    assert excinfo.value.state == OrderState.PLACING_MAIN
    assert fake.calls_to("DELETE", ORDER) == []


@pytest.mark.asyncio
async def test_settlement_timeout(fast_config):
    fake = FakeExchange(
        {
            ("GET", CONTRACTS): {"code": 0, "data": [DOLO_CONTRACT]},
            ("GET", PRICE): {"code": 0, "data": {"price": "0.1512"}},
            ("GET", POSITIONS): [{"code": 0, "data": []}, {"code": 0, "data": [_position(13.228, 0, 0.1512)]}],
            ("POST", LEVERAGE): {"code": 0},
            ("POST", ORDER): accept_order,
        }
    )
    with pytest.raises(SettlementTimeout) as excinfo:
        await OrderOrchestrator(fake, fast_config).place_order(
            Signal(symbol="DOLO-USDT", side="BUY", leverage=2, usdt_amount=1, tp_percent=5)
        )
    assert excinfo.value.state == OrderState.AWAITING_SETTLEMENT
    assert len(fake.calls_to("GET", POSITIONS)) == 1 + fast_config.max_poll_attempts
    assert len(fake.calls_to("POST", ORDER)) == 1


@pytest.mark.asyncio
async def test_close_all_positions(fast_config, paper):
    orchestrator = OrderOrchestrator(paper, fast_config)
    await orchestrator.place_order(Signal(symbol="BTCUSDT", side="BUY", usdt_amount=10, tp_percent=3))
    resp = await orchestrator.close_all_positions("BTCUSDT")
    assert resp["code"] == 0
    assert await orchestrator.positions.open_positions("BTC-USDT") == []
