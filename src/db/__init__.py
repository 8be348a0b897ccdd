"""Database package: declarative base, engine and ORM models."""

from src.db.base import Base
from src.db.engine import AsyncSessionLocal, create_tables, dispose_engine, get_async_engine
from src.db.models import (
    DecisionRow,
    EnrichedDataRow,
    ProcessingStageRow,
    SignalRow,
    SystemAlertRow,
    SystemMetricsRow,
    TradeRow,
    TradingRulesRow,
    WebhookLogRow,
)

__all__ = [
    "Base",
    "AsyncSessionLocal",
    "create_tables",
    "dispose_engine",
    "get_async_engine",
    "DecisionRow",
    "EnrichedDataRow",
    "ProcessingStageRow",
    "SignalRow",
    "SystemAlertRow",
    "SystemMetricsRow",
    "TradeRow",
    "TradingRulesRow",
    "WebhookLogRow",
]
