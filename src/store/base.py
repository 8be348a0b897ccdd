"""Persistence contract for the pipeline and monitoring subsystem.

Every component talks to storage through ``DataStore``. Two backends
implement it: ``InMemoryStore`` (default, and used in tests) and
``SqlAlchemyStore`` (PostgreSQL / SQLite through SQLAlchemy's asyncio
extension).
"""

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from src.monitoring.config import ProcessingStageType, StageStatus
from src.monitoring.models import (
    ProcessingStage,
    SystemAlert,
    SystemMetrics,
    WebhookFilters,
    WebhookRequest,
)
from src.paper_trading.types import TradeRecord, TradeStatus
from src.signal_pipeline.models import (
    Decision,
    DecisionType,
    EnrichmentResult,
    Signal,
    SignalStatus,
    TradingRules,
)

# Columns webhook listings may be sorted on
WEBHOOK_SORT_FIELDS = ("created_at", "processing_time", "payload_size", "status", "source_ip")


@runtime_checkable
class DataStore(Protocol):
    """Read/write operations the core needs from the persistent store."""

    # ── Signals ──
    async def create_signal(self, signal: Signal) -> Signal: ...
    async def get_signal(self, signal_id: str) -> Optional[Signal]: ...
    async def update_signal_status(self, signal_id: str, status: SignalStatus) -> None: ...
    async def count_signals(self, since: datetime) -> int: ...

    # ── Enrichment / rules / decisions ──
    async def save_enrichment(self, result: EnrichmentResult) -> EnrichmentResult: ...
    async def get_enrichment(self, signal_id: str) -> Optional[EnrichmentResult]: ...
    async def save_trading_rules(self, rules: TradingRules) -> TradingRules: ...
    async def get_active_trading_rules(self) -> Optional[TradingRules]: ...
    async def save_decision(self, decision: Decision) -> Decision: ...
    async def get_decision(self, signal_id: str) -> Optional[Decision]: ...
    async def count_decisions(self, since: datetime, decision: Optional[DecisionType] = None) -> int: ...

    # ── Trades ──
    async def save_trade(self, trade: TradeRecord) -> TradeRecord: ...
    async def get_trade(self, trade_id: str) -> Optional[TradeRecord]: ...
    async def update_trade(self, trade: TradeRecord) -> TradeRecord: ...
    async def list_trades(
        self, signal_id: Optional[str] = None, status: Optional[TradeStatus] = None,
    ) -> list[TradeRecord]: ...
    async def count_trades(self, since: datetime) -> int: ...

    # ── Webhook requests ──
    async def create_webhook_request(self, request: WebhookRequest) -> WebhookRequest: ...
    async def get_webhook_request(self, request_id: str) -> Optional[WebhookRequest]: ...
    async def update_webhook_request(self, request: WebhookRequest) -> WebhookRequest: ...
    async def query_webhook_requests(self, filters: WebhookFilters) -> tuple[list[WebhookRequest], int]: ...
    async def list_webhook_requests(
        self, since: datetime, until: Optional[datetime] = None,
    ) -> list[WebhookRequest]: ...

    # ── Processing stages ──
    async def create_stage(self, stage: ProcessingStage) -> ProcessingStage: ...
    async def get_stage(self, stage_id: str) -> Optional[ProcessingStage]: ...
    async def find_stage(self, signal_id: str, stage: ProcessingStageType) -> Optional[ProcessingStage]: ...
    async def update_stage(self, stage: ProcessingStage) -> ProcessingStage: ...
    async def list_stages(self, signal_id: str) -> list[ProcessingStage]: ...
    async def list_stages_by_status(self, status: StageStatus) -> list[ProcessingStage]: ...
    async def list_stages_since(self, since: datetime) -> list[ProcessingStage]: ...

    # ── Metrics ──
    async def save_metrics(self, snapshot: SystemMetrics) -> SystemMetrics: ...
    async def list_metrics(self, since: datetime, until: Optional[datetime] = None) -> list[SystemMetrics]: ...
    async def latest_metrics(self) -> Optional[SystemMetrics]: ...

    # ── Alerts ──
    async def save_alert(self, alert: SystemAlert) -> SystemAlert: ...
    async def get_alert(self, alert_id: str) -> Optional[SystemAlert]: ...
    async def update_alert(self, alert: SystemAlert) -> SystemAlert: ...
    async def list_alerts(
        self,
        since: Optional[datetime] = None,
        category: Optional[str] = None,
        active_only: bool = False,
    ) -> list[SystemAlert]: ...

    # ── Health ──
    async def ping(self) -> bool: ...
