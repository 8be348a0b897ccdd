"""Paper trading types.

Order request/response shapes shared by every broker client, the
persisted trade record, and the BrokerClient capability protocol.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

from src.monitoring.models import utcnow


class BrokerType(str, Enum):
    TRADIER = "tradier"
    TWELVEDATA = "twelvedata"
    ALPACA = "alpaca"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderType(str, Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"


class TimeInForce(str, Enum):
    DAY = "day"
    GTC = "gtc"
    IOC = "ioc"
    FOK = "fok"


class OrderStatus(str, Enum):
    PENDING = "pending"
    FILLED = "filled"
    PARTIAL = "partial"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class TradeStatus(str, Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class TradeSide(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


@dataclass
class OptionDetails:
    strike: float
    expiration: str  # YYYY-MM-DD
    option_type: str  # "call" | "put"

    def to_dict(self) -> dict:
        return {"strike": self.strike, "expiration": self.expiration, "option_type": self.option_type}


@dataclass
class OrderRequest:
    """One logical order, submitted unchanged to every broker."""
    symbol: str
    side: OrderSide
    quantity: int
    order_type: OrderType = OrderType.LIMIT
    limit_price: Optional[float] = None
    stop_price: Optional[float] = None
    time_in_force: TimeInForce = TimeInForce.DAY
    instrument_type: str = "stock"  # "stock" | "option"
    option_details: Optional[OptionDetails] = None

    @property
    def is_option(self) -> bool:
        return self.instrument_type == "option"

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "side": self.side.value,
            "quantity": self.quantity,
            "order_type": self.order_type.value,
            "limit_price": self.limit_price,
            "stop_price": self.stop_price,
            "time_in_force": self.time_in_force.value,
            "instrument_type": self.instrument_type,
            "option_details": self.option_details.to_dict() if self.option_details else None,
        }


@dataclass
class OrderResponse:
    """A broker's answer to an order, real or simulated."""
    order_id: str
    broker: BrokerType
    status: OrderStatus
    filled_quantity: float = 0.0
    filled_price: float = 0.0
    commission: float = 0.0
    timestamp: datetime = field(default_factory=utcnow)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_filled(self) -> bool:
        return self.status == OrderStatus.FILLED

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "broker": self.broker.value,
            "status": self.status.value,
            "filled_quantity": self.filled_quantity,
            "filled_price": self.filled_price,
            "commission": self.commission,
            "timestamp": self.timestamp.isoformat(),
            "raw_response": self.raw_response,
        }


@dataclass
class TradeRecord:
    """One persisted trade row: one broker's outcome for one logical trade."""
    trade_id: str
    signal_id: str
    broker: BrokerType
    order_id: str
    symbol: str
    instrument_type: str
    side: TradeSide
    quantity: float
    entry_price: float
    entry_value: float
    stop_loss: Optional[float] = None
    target1: Optional[float] = None
    strike: Optional[float] = None
    expiration: Optional[str] = None
    trailing: bool = False
    status: TradeStatus = TradeStatus.OPEN
    broker_data: dict[str, Any] = field(default_factory=dict)
    entered_at: datetime = field(default_factory=utcnow)
    exit_price: Optional[float] = None
    exited_at: Optional[datetime] = None
    pnl: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "trade_id": self.trade_id,
            "signal_id": self.signal_id,
            "broker": self.broker.value,
            "order_id": self.order_id,
            "symbol": self.symbol,
            "instrument_type": self.instrument_type,
            "side": self.side.value,
            "quantity": self.quantity,
            "entry_price": self.entry_price,
            "entry_value": self.entry_value,
            "stop_loss": self.stop_loss,
            "target1": self.target1,
            "strike": self.strike,
            "expiration": self.expiration,
            "trailing": self.trailing,
            "status": self.status.value,
            "entered_at": self.entered_at.isoformat(),
            "exit_price": self.exit_price,
            "exited_at": self.exited_at.isoformat() if self.exited_at else None,
            "pnl": self.pnl,
        }


@runtime_checkable
class BrokerClient(Protocol):
    """Capability interface every paper broker implements."""

    name: BrokerType

    async def place_order(self, request: OrderRequest) -> OrderResponse: ...

    async def get_order_status(self, order_id: str) -> OrderResponse: ...

    async def cancel_order(self, order_id: str) -> bool: ...

    async def get_positions(self) -> list[dict[str, Any]]: ...

    async def get_account_info(self) -> Optional[dict[str, Any]]: ...
