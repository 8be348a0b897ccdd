"""Multi-broker paper trading.

Order and trade types shared by the broker clients
(``src.paper_trading.clients``) and ``MultiBrokerExecutor``
(``src.paper_trading.executor``).
"""

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

__all__ = [
    "BrokerClient",
    "BrokerType",
    "OptionDetails",
    "OrderRequest",
    "OrderResponse",
    "OrderSide",
    "OrderStatus",
    "OrderType",
    "TimeInForce",
    "TradeRecord",
    "TradeSide",
    "TradeStatus",
]
