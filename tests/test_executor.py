"""Tests for multi-broker paper trade execution."""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from src.api_errors.exceptions import NotFoundError
from src.paper_trading.executor import (
    MultiBrokerExecutor,
    TradeExit,
    build_order_request,
    generate_trade_id,
    next_friday,
    to_base36,
)
from src.paper_trading.types import (
    BrokerType,
    OrderResponse,
    OrderSide,
    OrderStatus,
    TradeSide,
    TradeStatus,
)
from src.signal_pipeline.models import Decision, DecisionType, InstrumentType


def _filling_client(broker: BrokerType):
    """Broker mock that fills at the requested quantity and limit price."""
    client = AsyncMock()
    client.name = broker

    async def place_order(request):
        return OrderResponse(
            order_id=f"{broker.value}-1",
            broker=broker,
            status=OrderStatus.FILLED,
            filled_quantity=float(request.quantity),
            filled_price=request.limit_price,
        )

    client.place_order.side_effect = place_order
    return client


def _failing_client(broker: BrokerType, error=RuntimeError("gateway timeout")):
    client = AsyncMock()
    client.name = broker
    client.place_order.side_effect = error
    return client


def _trade_decision(signal_id="sig_1", **overrides):
    data = {"signal_id": signal_id, "decision": DecisionType.TRADE, "confidence": 0.9, "quantity": 10}
    data.update(overrides)
    return Decision(**data)


class TestHelpers:
    """Trade ids, expirations and order construction."""

    def test_base36(self):
        assert to_base36(0) == "0"
        assert to_base36(35) == "z"
        assert to_base36(36) == "10"

    def test_trade_id_format(self):
        trade_id = generate_trade_id(now_ms=36)
        prefix, stamp, suffix = trade_id.split("-")
        assert prefix == "DSP"
        assert stamp == "10"
        assert len(suffix) == 9
        assert trade_id == trade_id.upper()

    def test_next_friday_is_strictly_after(self):
        assert next_friday(date(2026, 10, 14)) == date(2026, 10, 16)
        assert next_friday(date(2026, 10, 16)) == date(2026, 10, 23)

    def test_stock_order(self, make_signal):
        request = build_order_request(make_signal(), _trade_decision())
        assert request.side == OrderSide.BUY
        assert request.quantity == 10
        assert request.limit_price == 450.0
        assert request.option_details is None

    def test_quantity_from_position_size(self, make_signal):
        request = build_order_request(make_signal(), _trade_decision(quantity=None, position_size=1000))
        assert request.quantity == 2

    def test_short_put_order(self, make_signal):
        decision = _trade_decision(instrument_type=InstrumentType.PUT, put_strike=440.0)
        request = build_order_request(make_signal(action="SHORT_ENTRY"), decision, today=date(2026, 10, 14))

        assert request.side == OrderSide.SELL
        assert request.is_option
        assert request.option_details.option_type == "put"
        assert request.option_details.strike == 440.0
        assert request.option_details.expiration == "2026-10-16"

    def test_call_spread_without_strike_uses_entry(self, make_signal):
        decision = _trade_decision(instrument_type=InstrumentType.CALL_SPREAD, expiration=date(2026, 11, 20))
        request = build_order_request(make_signal(), decision)
        assert request.option_details.option_type == "call"
        assert request.option_details.strike == 450.0
        assert request.option_details.expiration == "2026-11-20"


class TestExecuteTrade:
    """Fan-out to all brokers and per-broker persistence."""

    @pytest.mark.asyncio
    async def test_all_brokers_fill(self, store, make_signal):
        signal = await store.create_signal(make_signal())
        clients = [_filling_client(b) for b in BrokerType]
        executor = MultiBrokerExecutor(store, clients)

        report = await executor.execute_trade(signal, _trade_decision(signal.id))

        assert set(report.successful_brokers) == set(BrokerType)
        assert report.total_brokers == 3
        trades = await store.list_trades(signal_id=signal.id)
        assert len(trades) == 3
        assert {t.trade_id for t in trades} == {f"{report.trade_id}-{b.value}" for b in BrokerType}
        assert all(t.status == TradeStatus.OPEN for t in trades)
        assert all(t.side == TradeSide.LONG for t in trades)
        assert all(t.entry_value == 4500.0 for t in trades)
        for client in clients:
            client.place_order.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_one_broker_failure_still_writes_every_row(self, store, make_signal):
        signal = await store.create_signal(make_signal())
        executor = MultiBrokerExecutor(store, [
            _filling_client(BrokerType.TRADIER),
            _filling_client(BrokerType.TWELVEDATA),
            _failing_client(BrokerType.ALPACA),
        ])

        report = await executor.execute_trade(signal, _trade_decision(signal.id))

        assert sorted(b.value for b in report.successful_brokers) == ["tradier", "twelvedata"]
        assert report.errors == {BrokerType.ALPACA: "gateway timeout"}
        trades = {t.broker: t for t in await store.list_trades(signal_id=signal.id)}
        assert len(trades) == 3
        assert trades[BrokerType.ALPACA].status == TradeStatus.CANCELLED
        assert trades[BrokerType.ALPACA].broker_data == {"error": "gateway timeout"}
        assert trades[BrokerType.ALPACA].order_id.startswith("alpaca-failed-")
        assert trades[BrokerType.TRADIER].status == TradeStatus.OPEN
        assert trades[BrokerType.TRADIER].quantity == trades[BrokerType.ALPACA].quantity
        assert {type(t.quantity) for t in trades.values()} == {float}
        assert trades[BrokerType.TRADIER].entry_price == trades[BrokerType.ALPACA].entry_price

    @pytest.mark.asyncio
    async def test_error_without_message_uses_type_name(self, store, make_signal):
        signal = await store.create_signal(make_signal())
        executor = MultiBrokerExecutor(store, [_failing_client(BrokerType.TRADIER, TimeoutError())])
        report = await executor.execute_trade(signal, _trade_decision(signal.id))
        assert report.errors[BrokerType.TRADIER] == "TimeoutError"

    @pytest.mark.asyncio
    async def test_report_to_dict(self, store, make_signal):
        signal = await store.create_signal(make_signal())
        executor = MultiBrokerExecutor(store, [_filling_client(BrokerType.TRADIER)])
        report = await executor.execute_trade(signal, _trade_decision(signal.id))

        data = report.to_dict()
        assert data["successful_brokers"] == ["tradier"]
        assert data["results"]["tradier"]["status"] == "filled"

    def test_get_client(self, store):
        executor = MultiBrokerExecutor(store, [_filling_client(BrokerType.TRADIER)])
        assert executor.get_client(BrokerType.TRADIER).name == BrokerType.TRADIER
        with pytest.raises(NotFoundError):
            executor.get_client(BrokerType.ALPACA)


class TestUpdateTradeStatus:
    """Closing or cancelling every row of a logical trade."""

    @pytest.mark.asyncio
    async def test_close_all_rows(self, store, make_signal):
        signal = await store.create_signal(make_signal())
        executor = MultiBrokerExecutor(store, [_filling_client(b) for b in BrokerType])
        report = await executor.execute_trade(signal, _trade_decision(signal.id))

        updated = await executor.update_trade_status(
            report.trade_id, TradeStatus.CLOSED, TradeExit(exit_price=460.0, pnl=100.0, exit_reason="target1"),
        )

        assert len(updated) == 3
        assert all(t.status == TradeStatus.CLOSED for t in updated)
        assert all(t.exit_price == 460.0 and t.pnl == 100.0 for t in updated)
        assert all(t.broker_data["exit_reason"] == "target1" for t in updated)
        assert await executor.get_open_trades() == []

    @pytest.mark.asyncio
    async def test_broker_row_id_resolves_to_logical_trade(self, store, make_signal):
        signal = await store.create_signal(make_signal())
        executor = MultiBrokerExecutor(store, [_filling_client(b) for b in BrokerType])
        report = await executor.execute_trade(signal, _trade_decision(signal.id))

        updated = await executor.update_trade_status(f"{report.trade_id}-tradier", TradeStatus.CANCELLED)
        assert len(updated) == 3

    @pytest.mark.asyncio
    async def test_unknown_trade(self, store):
        executor = MultiBrokerExecutor(store, [])
        with pytest.raises(NotFoundError):
            await executor.update_trade_status("DSP-0-NOPE", TradeStatus.CLOSED)
