"""Multi-broker paper trade execution.

One logical trade is submitted unchanged to every configured broker at
once; each broker's outcome becomes its own trade row keyed
``{trade_id}-{broker}``.
"""

import asyncio
import logging
import math
import secrets
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional

from src.api_errors.exceptions import NotFoundError
from src.paper_trading.types import (
    BrokerClient,
    BrokerType,
    OptionDetails,
    OrderRequest,
    OrderResponse,
    OrderSide,
    OrderStatus,
    OrderType,
    TimeInForce,
    TradeRecord,
    TradeSide,
    TradeStatus,
)
from src.monitoring.models import utcnow
from src.signal_pipeline.models import Decision, InstrumentType, Signal
from src.store.base import DataStore

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"
_CALL_TYPES = (InstrumentType.CALL, InstrumentType.CALL_SPREAD)


def to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_trade_id(now_ms: Optional[int] = None) -> str:
    """``DSP-{base36 epoch ms}-{random}``, upper-case."""
    ms = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"DSP-{to_base36(ms)}-{suffix}".upper()


def next_friday(today: Optional[date] = None) -> date:
    """The next Friday strictly after today."""
    today = today or date.today()
    return today + timedelta(days=(4 - today.weekday()) % 7 or 7)


def build_order_request(signal: Signal, decision: Decision, today: Optional[date] = None) -> OrderRequest:
    """Translate a signal and its TRADE decision into a limit order."""
    is_long = signal.is_long
    quantity = decision.quantity or math.floor((decision.position_size or 100) / signal.entry_price)
    is_option = decision.instrument_type != InstrumentType.STOCK

    request = OrderRequest(
        symbol=signal.ticker,
        side=OrderSide.BUY if is_long else OrderSide.SELL,
        quantity=int(quantity),
        order_type=OrderType.LIMIT,
        limit_price=signal.entry_price,
        time_in_force=TimeInForce.DAY,
        instrument_type="option" if is_option else "stock",
    )
    if is_option:
        strike = decision.call_strike if is_long else decision.put_strike
        expiration = decision.expiration or next_friday(today)
        request.option_details = OptionDetails(
            strike=strike or signal.entry_price,
            expiration=expiration.isoformat(),
            option_type="call" if decision.instrument_type in _CALL_TYPES else "put",
        )
    return request


@dataclass
class TradeExit:
    exit_price: float
    pnl: float
    exit_reason: Optional[str] = None


@dataclass
class ExecutionReport:
    """Outcome of one logical trade across all brokers."""
    trade_id: str
    request: OrderRequest
    results: dict[BrokerType, OrderResponse] = field(default_factory=dict)
    errors: dict[BrokerType, str] = field(default_factory=dict)

    @property
    def successful_brokers(self) -> list[BrokerType]:
        return [b for b, r in self.results.items() if r.status == OrderStatus.FILLED]

    @property
    def total_brokers(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict:
        return {
            "trade_id": self.trade_id,
            "request": self.request.to_dict(),
            "results": {b.value: r.to_dict() for b, r in self.results.items()},
            "errors": {b.value: e for b, e in self.errors.items()},
            "successful_brokers": [b.value for b in self.successful_brokers],
            "total_brokers": self.total_brokers,
        }


class MultiBrokerExecutor:
    """Fans one order out to every broker concurrently.

    Example:
        executor = MultiBrokerExecutor(store, build_clients())
        report = await executor.execute_trade(signal, decision)
        report.successful_brokers
    """

    def __init__(self, store: DataStore, clients: list[BrokerClient]) -> None:
        self._store = store
        self.clients = list(clients)

    def get_client(self, broker: BrokerType) -> BrokerClient:
        for client in self.clients:
            if client.name == broker:
                return client
        raise NotFoundError("BrokerClient", broker.value)

    async def _execute_on_broker(
        self, client: BrokerClient, request: OrderRequest,
    ) -> tuple[BrokerType, OrderResponse, Optional[str]]:
        try:
            response = await client.place_order(request)
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error("%s order failed: %s", client.name.value, message,
                         extra={"broker": client.name.value})
            return client.name, OrderResponse(
                order_id=f"{client.name.value}-failed-{int(time.time() * 1000)}",
                broker=client.name,
                status=OrderStatus.REJECTED,
                raw_response={"error": message},
            ), message
        logger.info("%s order placed: %s (%s)", client.name.value, response.order_id,
                    response.status.value, extra={"broker": client.name.value})
        return client.name, response, None

    async def execute_trade(self, signal: Signal, decision: Decision) -> ExecutionReport:
        """Submit the order everywhere, then persist one trade row per broker.

        A broker that raises yields a rejected synthetic response; it
        never prevents the other brokers' rows from being written.
        """
        trade_id = generate_trade_id()
        request = build_order_request(signal, decision)
        logger.info("Executing trade %s for signal %s: %s %d %s @ %s", trade_id, signal.id,
                    request.side.value, request.quantity, request.symbol, request.limit_price)

        outcomes = await asyncio.gather(
            *(self._execute_on_broker(client, request) for client in self.clients)
        )

        report = ExecutionReport(trade_id=trade_id, request=request)
        for broker, response, error in outcomes:
            report.results[broker] = response
            if error is not None:
                report.errors[broker] = error

        side = TradeSide.LONG if signal.is_long else TradeSide.SHORT
        for broker, response in report.results.items():
            quantity = float(response.filled_quantity or request.quantity)
            price = response.filled_price or request.limit_price or signal.entry_price
            await self._store.save_trade(TradeRecord(
                trade_id=f"{trade_id}-{broker.value}",
                signal_id=signal.id,
                broker=broker,
                order_id=response.order_id,
                symbol=signal.ticker,
                instrument_type=decision.instrument_type.value,
                side=side,
                quantity=quantity,
                entry_price=price,
                entry_value=quantity * price,
                stop_loss=signal.stop_loss,
                target1=signal.target1,
                strike=request.option_details.strike if request.option_details else None,
                expiration=request.option_details.expiration if request.option_details else None,
                status=TradeStatus.OPEN if response.status == OrderStatus.FILLED else TradeStatus.CANCELLED,
                broker_data=response.raw_response,
            ))

        logger.info("Trade %s executed: %d/%d brokers filled", trade_id,
                    len(report.successful_brokers), report.total_brokers)
        return report

    async def get_open_trades(self) -> list[TradeRecord]:
        return await self._store.list_trades(status=TradeStatus.OPEN)

    async def get_trade(self, trade_id: str) -> Optional[TradeRecord]:
        return await self._store.get_trade(trade_id)

    async def update_trade_status(
        self, trade_id: str, status: TradeStatus, exit_details: Optional[TradeExit] = None,
    ) -> list[TradeRecord]:
        """Update every broker row of a logical trade.

        ``trade_id`` may be the logical id or any broker row id.

        Raises:
            NotFoundError: no row belongs to the trade.
        """
        base_id = "-".join(trade_id.split("-")[:3])
        rows = [t for t in await self._store.list_trades() if t.trade_id.startswith(base_id)]
        if not rows:
            raise NotFoundError("Trade", trade_id)

        updated = []
        for row in rows:
            row.status = status
            if exit_details is not None:
                row.exit_price = exit_details.exit_price
                row.exited_at = utcnow()
                row.pnl = exit_details.pnl
                if exit_details.exit_reason:
                    row.broker_data = {**row.broker_data, "exit_reason": exit_details.exit_reason}
            updated.append(await self._store.update_trade(row))
        logger.info("Trade %s -> %s (%d rows)", base_id, status.value, len(updated))
        return updated

