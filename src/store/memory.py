"""In-memory DataStore.

Default backend when ``use_database`` is off. Every read returns a
copy, so callers only change stored state through the update methods,
the same as with a real database.
"""

import copy
from datetime import datetime
from typing import Optional

from src.api_errors.exceptions import ConflictError, NotFoundError
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
from src.store.base import WEBHOOK_SORT_FIELDS


def _copy(value):
    return copy.deepcopy(value)


class InMemoryStore:
    """Dict-backed implementation of the DataStore protocol."""

    def __init__(self) -> None:
        self._signals: dict[str, Signal] = {}
        self._enrichments: dict[str, EnrichmentResult] = {}
        self._rules: dict[str, TradingRules] = {}
        self._decisions: dict[str, Decision] = {}
        self._trades: dict[str, TradeRecord] = {}
        self._webhooks: dict[str, WebhookRequest] = {}
        self._stages: dict[str, ProcessingStage] = {}
        self._metrics: list[SystemMetrics] = []
        self._alerts: dict[str, SystemAlert] = {}

    # ── Signals ──────────────────────────────────────────────────────

    async def create_signal(self, signal: Signal) -> Signal:
        if signal.id in self._signals:
            raise ConflictError(f"Signal {signal.id} already exists")
        self._signals[signal.id] = _copy(signal)
        return _copy(signal)

    async def get_signal(self, signal_id: str) -> Optional[Signal]:
        return _copy(self._signals.get(signal_id))

    async def update_signal_status(self, signal_id: str, status: SignalStatus) -> None:
        signal = self._signals.get(signal_id)
        if signal is None:
            raise NotFoundError("Signal", signal_id)
        signal.status = status

    async def count_signals(self, since: datetime) -> int:
        return sum(1 for s in self._signals.values() if s.created_at >= since)

    # ── Enrichment / rules / decisions ───────────────────────────────

    async def save_enrichment(self, result: EnrichmentResult) -> EnrichmentResult:
        self._enrichments[result.signal_id] = _copy(result)
        return _copy(result)

    async def get_enrichment(self, signal_id: str) -> Optional[EnrichmentResult]:
        return _copy(self._enrichments.get(signal_id))

    async def save_trading_rules(self, rules: TradingRules) -> TradingRules:
        self._rules[rules.id] = _copy(rules)
        return _copy(rules)

    async def get_active_trading_rules(self) -> Optional[TradingRules]:
        active = [r for r in self._rules.values() if r.is_active]
        if not active:
            return None
        return _copy(max(active, key=lambda r: r.created_at))

    async def save_decision(self, decision: Decision) -> Decision:
        self._decisions[decision.id] = _copy(decision)
        return _copy(decision)

    async def get_decision(self, signal_id: str) -> Optional[Decision]:
        matches = [d for d in self._decisions.values() if d.signal_id == signal_id]
        if not matches:
            return None
        return _copy(max(matches, key=lambda d: d.created_at))

    async def count_decisions(self, since: datetime, decision: Optional[DecisionType] = None) -> int:
        return sum(
            1 for d in self._decisions.values()
            if d.created_at >= since and (decision is None or d.decision == decision)
        )

    # ── Trades ───────────────────────────────────────────────────────

    async def save_trade(self, trade: TradeRecord) -> TradeRecord:
        if trade.trade_id in self._trades:
            raise ConflictError(f"Trade {trade.trade_id} already exists")
        self._trades[trade.trade_id] = _copy(trade)
        return _copy(trade)

    async def get_trade(self, trade_id: str) -> Optional[TradeRecord]:
        return _copy(self._trades.get(trade_id))

    async def update_trade(self, trade: TradeRecord) -> TradeRecord:
        if trade.trade_id not in self._trades:
            raise NotFoundError("Trade", trade.trade_id)
        self._trades[trade.trade_id] = _copy(trade)
        return _copy(trade)

    async def list_trades(
        self, signal_id: Optional[str] = None, status: Optional[TradeStatus] = None,
    ) -> list[TradeRecord]:
        trades = [
            t for t in self._trades.values()
            if (signal_id is None or t.signal_id == signal_id)
            and (status is None or t.status == status)
        ]
        trades.sort(key=lambda t: t.entered_at, reverse=True)
        return _copy(trades)

    async def count_trades(self, since: datetime) -> int:
        return sum(1 for t in self._trades.values() if t.entered_at >= since)

    # ── Webhook requests ─────────────────────────────────────────────

    async def create_webhook_request(self, request: WebhookRequest) -> WebhookRequest:
        self._webhooks[request.id] = _copy(request)
        return _copy(request)

    async def get_webhook_request(self, request_id: str) -> Optional[WebhookRequest]:
        return _copy(self._webhooks.get(request_id))

    async def update_webhook_request(self, request: WebhookRequest) -> WebhookRequest:
        if request.id not in self._webhooks:
            raise NotFoundError("WebhookRequest", request.id)
        self._webhooks[request.id] = _copy(request)
        return _copy(request)

    async def query_webhook_requests(self, filters: WebhookFilters) -> tuple[list[WebhookRequest], int]:
        sort_by = filters.sort_by if filters.sort_by in WEBHOOK_SORT_FIELDS else "created_at"
        matched = [r for r in self._webhooks.values() if filters.matches(r)]
        matched.sort(
            key=lambda r: getattr(r, sort_by).value if sort_by == "status" else getattr(r, sort_by),
            reverse=filters.sort_order != "asc",
        )
        start = (filters.page - 1) * filters.limit
        return _copy(matched[start:start + filters.limit]), len(matched)

    async def list_webhook_requests(
        self, since: datetime, until: Optional[datetime] = None,
    ) -> list[WebhookRequest]:
        rows = [
            r for r in self._webhooks.values()
            if r.created_at >= since and (until is None or r.created_at <= until)
        ]
        rows.sort(key=lambda r: r.created_at)
        return _copy(rows)

    # ── Processing stages ────────────────────────────────────────────

    async def create_stage(self, stage: ProcessingStage) -> ProcessingStage:
        for existing in self._stages.values():
            if existing.signal_id == stage.signal_id and existing.stage == stage.stage:
                raise ConflictError(
                    f"Stage {stage.stage.value} already exists for signal {stage.signal_id}"
                )
        self._stages[stage.id] = _copy(stage)
        return _copy(stage)

    async def get_stage(self, stage_id: str) -> Optional[ProcessingStage]:
        return _copy(self._stages.get(stage_id))

    async def find_stage(self, signal_id: str, stage: ProcessingStageType) -> Optional[ProcessingStage]:
        for existing in self._stages.values():
            if existing.signal_id == signal_id and existing.stage == stage:
                return _copy(existing)
        return None

    async def update_stage(self, stage: ProcessingStage) -> ProcessingStage:
        if stage.id not in self._stages:
            raise NotFoundError("ProcessingStage", stage.id)
        self._stages[stage.id] = _copy(stage)
        return _copy(stage)

    async def list_stages(self, signal_id: str) -> list[ProcessingStage]:
        # dicts keep insertion order, which is arrival order
        return _copy([s for s in self._stages.values() if s.signal_id == signal_id])

    async def list_stages_by_status(self, status: StageStatus) -> list[ProcessingStage]:
        return _copy([s for s in self._stages.values() if s.status == status])

    async def list_stages_since(self, since: datetime) -> list[ProcessingStage]:
        return _copy([s for s in self._stages.values() if s.started_at >= since])

    # ── Metrics ──────────────────────────────────────────────────────

    async def save_metrics(self, snapshot: SystemMetrics) -> SystemMetrics:
        self._metrics.append(_copy(snapshot))
        self._metrics.sort(key=lambda m: m.timestamp)
        return _copy(snapshot)

    async def list_metrics(self, since: datetime, until: Optional[datetime] = None) -> list[SystemMetrics]:
        rows = [
            m for m in self._metrics
            if m.timestamp >= since and (until is None or m.timestamp <= until)
        ]
        return _copy(rows)

    async def latest_metrics(self) -> Optional[SystemMetrics]:
        return _copy(self._metrics[-1]) if self._metrics else None

    # ── Alerts ───────────────────────────────────────────────────────

    async def save_alert(self, alert: SystemAlert) -> SystemAlert:
        self._alerts[alert.id] = _copy(alert)
        return _copy(alert)

    async def get_alert(self, alert_id: str) -> Optional[SystemAlert]:
        return _copy(self._alerts.get(alert_id))

    async def update_alert(self, alert: SystemAlert) -> SystemAlert:
        if alert.id not in self._alerts:
            raise NotFoundError("SystemAlert", alert.id)
        self._alerts[alert.id] = _copy(alert)
        return _copy(alert)

    async def list_alerts(
        self,
        since: Optional[datetime] = None,
        category: Optional[str] = None,
        active_only: bool = False,
    ) -> list[SystemAlert]:
        alerts = [
            a for a in self._alerts.values()
            if (since is None or a.created_at >= since)
            and (category is None or a.category.value == category)
            and (not active_only or a.is_active)
        ]
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        return _copy(alerts)

    # ── Health ───────────────────────────────────────────────────────

    async def ping(self) -> bool:
        return True
