"""SQLAlchemy-backed DataStore.

Maps the monitoring and pipeline dataclasses onto the ORM models in
``src.db.models``. Each operation runs in its own short session.
Datetimes read back from backends that drop tzinfo (SQLite) are
normalized to UTC.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from src.api_errors.exceptions import ConflictError, NotFoundError
from src.db.engine import get_async_session_factory
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
from src.monitoring.config import (
    AlertCategory,
    AlertSeverity,
    ProcessingStageType,
    StageStatus,
    WebhookStatus,
)
from src.monitoring.models import (
    ProcessingStage,
    SystemAlert,
    SystemMetrics,
    WebhookFilters,
    WebhookRequest,
)
from src.paper_trading.types import BrokerType, TradeRecord, TradeSide, TradeStatus
from src.signal_pipeline.models import (
    Decision,
    DecisionType,
    EnrichmentResult,
    InstrumentType,
    Signal,
    SignalStatus,
    TradingRules,
)
from src.store.base import WEBHOOK_SORT_FIELDS

logger = logging.getLogger(__name__)

_METRIC_FIELDS = (
    "webhooks_per_minute", "avg_processing_time", "error_rate", "queue_depth",
    "memory_usage", "cpu_usage", "db_connections", "signals_processed",
    "trades_executed", "decisions_approved", "decisions_rejected",
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# =====================================================================
# Row <-> record converters
# =====================================================================


def _signal_from_row(row: SignalRow) -> Signal:
    return Signal(
        id=row.id,
        created_at=_aware(row.created_at),
        ticker=row.ticker,
        action=row.action,
        entry_price=row.entry_price,
        timeframe_minutes=row.timeframe_minutes,
        quality=row.quality,
        stop_loss=row.stop_loss,
        target1=row.target1,
        atr=row.atr,
        status=SignalStatus(row.status),
        raw_payload=dict(row.raw_payload or {}),
    )


def _decision_from_row(row: DecisionRow) -> Decision:
    return Decision(
        id=row.id,
        created_at=_aware(row.created_at),
        signal_id=row.signal_id,
        decision=DecisionType(row.decision),
        confidence=row.confidence,
        instrument_type=InstrumentType(row.instrument_type or InstrumentType.STOCK.value),
        quantity=row.quantity,
        position_size=row.position_size,
        call_strike=row.call_strike,
        put_strike=row.put_strike,
        expiration=row.expiration,
        risk_amount=row.risk_amount,
        expected_return=row.expected_return,
        risk_reward_ratio=row.risk_reward_ratio,
        win_probability=row.win_probability,
        model_version=row.model_version,
        reasoning=dict(row.reasoning or {}),
        weights=dict(row.weights or {}),
    )


def _rules_from_row(row: TradingRulesRow) -> TradingRules:
    return TradingRules(
        id=row.id,
        created_at=_aware(row.created_at),
        version=row.version,
        is_active=row.is_active,
        min_quality=row.min_quality,
        min_confidence=row.min_confidence,
        max_risk_percent=row.max_risk_percent,
        weights=dict(row.weights or {}),
        parameters=dict(row.parameters or {}),
    )


def _trade_to_values(trade: TradeRecord) -> dict[str, Any]:
    return {
        "trade_id": trade.trade_id,
        "signal_id": trade.signal_id,
        "broker": trade.broker.value,
        "order_id": trade.order_id,
        "symbol": trade.symbol,
        "instrument_type": trade.instrument_type,
        "side": trade.side.value,
        "quantity": trade.quantity,
        "entry_price": trade.entry_price,
        "entry_value": trade.entry_value,
        "stop_loss": trade.stop_loss,
        "target1": trade.target1,
        "strike": trade.strike,
        "expiration": trade.expiration,
        "trailing": trade.trailing,
        "status": trade.status.value,
        "broker_data": trade.broker_data,
        "entered_at": trade.entered_at,
        "exit_price": trade.exit_price,
        "exited_at": trade.exited_at,
        "pnl": trade.pnl,
    }


def _trade_from_row(row: TradeRow) -> TradeRecord:
    return TradeRecord(
        trade_id=row.trade_id,
        signal_id=row.signal_id,
        broker=BrokerType(row.broker),
        order_id=row.order_id,
        symbol=row.symbol,
        instrument_type=row.instrument_type,
        side=TradeSide(row.side),
        quantity=row.quantity,
        entry_price=row.entry_price,
        entry_value=row.entry_value,
        stop_loss=row.stop_loss,
        target1=row.target1,
        strike=row.strike,
        expiration=row.expiration,
        trailing=row.trailing,
        status=TradeStatus(row.status),
        broker_data=dict(row.broker_data or {}),
        entered_at=_aware(row.entered_at),
        exit_price=row.exit_price,
        exited_at=_aware(row.exited_at),
        pnl=row.pnl,
    )


def _webhook_to_values(request: WebhookRequest) -> dict[str, Any]:
    return {
        "id": request.id,
        "created_at": request.created_at,
        "source_ip": request.source_ip,
        "user_agent": request.user_agent,
        "headers": request.headers,
        "payload": request.payload,
        "payload_size": request.payload_size,
        "signature": request.signature,
        "processing_time": request.processing_time,
        "status": request.status.value,
        "error_message": request.error_message,
        "error_stack": request.error_stack,
        "signal_id": request.signal_id,
        "ticker": request.ticker,
    }


def _webhook_from_row(row: WebhookLogRow) -> WebhookRequest:
    return WebhookRequest(
        id=row.id,
        created_at=_aware(row.created_at),
        source_ip=row.source_ip,
        user_agent=row.user_agent,
        headers=dict(row.headers or {}),
        payload=dict(row.payload or {}),
        payload_size=row.payload_size,
        signature=row.signature,
        processing_time=row.processing_time,
        status=WebhookStatus(row.status),
        error_message=row.error_message,
        error_stack=row.error_stack,
        signal_id=row.signal_id,
    )


def _stage_to_values(stage: ProcessingStage) -> dict[str, Any]:
    return {
        "id": stage.id,
        "signal_id": stage.signal_id,
        "stage": stage.stage.value,
        "status": stage.status.value,
        "started_at": stage.started_at,
        "completed_at": stage.completed_at,
        "duration": stage.duration,
        "error_message": stage.error_message,
        "stage_metadata": stage.metadata,
    }


def _stage_from_row(row: ProcessingStageRow) -> ProcessingStage:
    return ProcessingStage(
        id=row.id,
        signal_id=row.signal_id,
        stage=ProcessingStageType(row.stage),
        status=StageStatus(row.status),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        duration=row.duration,
        error_message=row.error_message,
        metadata=dict(row.stage_metadata or {}),
    )


def _metrics_from_row(row: SystemMetricsRow) -> SystemMetrics:
    values = {name: getattr(row, name) for name in _METRIC_FIELDS}
    return SystemMetrics(id=row.id, timestamp=_aware(row.timestamp), **values)


def _alert_to_values(alert: SystemAlert) -> dict[str, Any]:
    return {
        "id": alert.id,
        "created_at": alert.created_at,
        "type": alert.type,
        "severity": alert.severity.value,
        "category": alert.category.value,
        "title": alert.title,
        "message": alert.message,
        "details": alert.details,
        "acknowledged": alert.acknowledged,
        "acknowledged_at": alert.acknowledged_at,
        "acknowledged_by": alert.acknowledged_by,
        "resolved": alert.resolved,
        "resolved_at": alert.resolved_at,
        "escalated": alert.escalated,
    }


def _alert_from_row(row: SystemAlertRow) -> SystemAlert:
    return SystemAlert(
        id=row.id,
        created_at=_aware(row.created_at),
        type=row.type,
        severity=AlertSeverity(row.severity),
        category=AlertCategory(row.category),
        title=row.title,
        message=row.message,
        details=dict(row.details or {}),
        acknowledged=row.acknowledged,
        acknowledged_at=_aware(row.acknowledged_at),
        acknowledged_by=row.acknowledged_by,
        resolved=row.resolved,
        resolved_at=_aware(row.resolved_at),
        escalated=row.escalated,
    )


# =====================================================================
# Store
# =====================================================================


class SqlAlchemyStore:
    """DataStore over an async SQLAlchemy engine."""

    def __init__(self, engine: Optional[AsyncEngine] = None) -> None:
        self._session_factory: async_sessionmaker = get_async_session_factory(engine)

    async def _add(self, row) -> None:
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()

    async def _scalar(self, stmt) -> Any:
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar()

    async def _all(self, stmt) -> list:
        async with self._session_factory() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def _first(self, stmt):
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalars().first()

    async def _update(self, model, pk: str, values: dict[str, Any], resource: str) -> None:
        async with self._session_factory() as session:
            row = await session.get(model, pk)
            if row is None:
                raise NotFoundError(resource, pk)
            for key, value in values.items():
                setattr(row, key, value)
            await session.commit()

    # ── Signals ──────────────────────────────────────────────────────

    async def create_signal(self, signal: Signal) -> Signal:
        try:
            await self._add(SignalRow(
                id=signal.id,
                created_at=signal.created_at,
                ticker=signal.ticker,
                action=signal.action,
                entry_price=signal.entry_price,
                timeframe_minutes=signal.timeframe_minutes,
                quality=signal.quality,
                stop_loss=signal.stop_loss,
                target1=signal.target1,
                atr=signal.atr,
                status=signal.status.value,
                raw_payload=signal.raw_payload,
            ))
        except IntegrityError as exc:
            raise ConflictError(f"Signal {signal.id} already exists") from exc
        return signal

    async def get_signal(self, signal_id: str) -> Optional[Signal]:
        row = await self._first(select(SignalRow).where(SignalRow.id == signal_id))
        return _signal_from_row(row) if row else None

    async def update_signal_status(self, signal_id: str, status: SignalStatus) -> None:
        await self._update(SignalRow, signal_id, {"status": status.value}, "Signal")

    async def count_signals(self, since: datetime) -> int:
        return await self._scalar(
            select(func.count()).select_from(SignalRow).where(SignalRow.created_at >= since)
        ) or 0

    # ── Enrichment / rules / decisions ───────────────────────────────

    async def save_enrichment(self, result: EnrichmentResult) -> EnrichmentResult:
        await self._add(EnrichedDataRow(
            id=result.id,
            created_at=result.created_at,
            signal_id=result.signal_id,
            data_quality=result.data_quality,
            aggregated_data=result.aggregated_data,
        ))
        return result

    async def get_enrichment(self, signal_id: str) -> Optional[EnrichmentResult]:
        row = await self._first(
            select(EnrichedDataRow)
            .where(EnrichedDataRow.signal_id == signal_id)
            .order_by(EnrichedDataRow.created_at.desc())
        )
        if row is None:
            return None
        return EnrichmentResult(
            id=row.id,
            created_at=_aware(row.created_at),
            signal_id=row.signal_id,
            data_quality=row.data_quality,
            aggregated_data=dict(row.aggregated_data or {}),
        )

    async def save_trading_rules(self, rules: TradingRules) -> TradingRules:
        await self._add(TradingRulesRow(
            id=rules.id,
            created_at=rules.created_at,
            version=rules.version,
            is_active=rules.is_active,
            min_quality=rules.min_quality,
            min_confidence=rules.min_confidence,
            max_risk_percent=rules.max_risk_percent,
            weights=rules.weights,
            parameters=rules.parameters,
        ))
        return rules

    async def get_active_trading_rules(self) -> Optional[TradingRules]:
        row = await self._first(
            select(TradingRulesRow)
            .where(TradingRulesRow.is_active.is_(True))
            .order_by(TradingRulesRow.created_at.desc())
        )
        return _rules_from_row(row) if row else None

    async def save_decision(self, decision: Decision) -> Decision:
        await self._add(DecisionRow(
            id=decision.id,
            created_at=decision.created_at,
            signal_id=decision.signal_id,
            decision=decision.decision.value,
            confidence=decision.confidence,
            instrument_type=decision.instrument_type.value,
            quantity=decision.quantity,
            position_size=decision.position_size,
            call_strike=decision.call_strike,
            put_strike=decision.put_strike,
            expiration=decision.expiration,
            risk_amount=decision.risk_amount,
            expected_return=decision.expected_return,
            risk_reward_ratio=decision.risk_reward_ratio,
            win_probability=decision.win_probability,
            model_version=decision.model_version,
            reasoning=decision.reasoning,
            weights=decision.weights,
        ))
        return decision

    async def get_decision(self, signal_id: str) -> Optional[Decision]:
        row = await self._first(
            select(DecisionRow)
            .where(DecisionRow.signal_id == signal_id)
            .order_by(DecisionRow.created_at.desc())
        )
        return _decision_from_row(row) if row else None

    async def count_decisions(self, since: datetime, decision: Optional[DecisionType] = None) -> int:
        stmt = select(func.count()).select_from(DecisionRow).where(DecisionRow.created_at >= since)
        if decision is not None:
            stmt = stmt.where(DecisionRow.decision == decision.value)
        return await self._scalar(stmt) or 0

    # ── Trades ───────────────────────────────────────────────────────

    async def save_trade(self, trade: TradeRecord) -> TradeRecord:
        try:
            await self._add(TradeRow(**_trade_to_values(trade)))
        except IntegrityError as exc:
            raise ConflictError(f"Trade {trade.trade_id} already exists") from exc
        return trade

    async def get_trade(self, trade_id: str) -> Optional[TradeRecord]:
        row = await self._first(select(TradeRow).where(TradeRow.trade_id == trade_id))
        return _trade_from_row(row) if row else None

    async def update_trade(self, trade: TradeRecord) -> TradeRecord:
        values = _trade_to_values(trade)
        values.pop("trade_id")
        await self._update(TradeRow, trade.trade_id, values, "Trade")
        return trade

    async def list_trades(
        self, signal_id: Optional[str] = None, status: Optional[TradeStatus] = None,
    ) -> list[TradeRecord]:
        stmt = select(TradeRow).order_by(TradeRow.entered_at.desc())
        if signal_id is not None:
            stmt = stmt.where(TradeRow.signal_id == signal_id)
        if status is not None:
            stmt = stmt.where(TradeRow.status == status.value)
        return [_trade_from_row(r) for r in await self._all(stmt)]

    async def count_trades(self, since: datetime) -> int:
        return await self._scalar(
            select(func.count()).select_from(TradeRow).where(TradeRow.entered_at >= since)
        ) or 0

    # ── Webhook requests ─────────────────────────────────────────────

    async def create_webhook_request(self, request: WebhookRequest) -> WebhookRequest:
        await self._add(WebhookLogRow(**_webhook_to_values(request)))
        return request

    async def get_webhook_request(self, request_id: str) -> Optional[WebhookRequest]:
        row = await self._first(select(WebhookLogRow).where(WebhookLogRow.id == request_id))
        return _webhook_from_row(row) if row else None

    async def update_webhook_request(self, request: WebhookRequest) -> WebhookRequest:
        values = _webhook_to_values(request)
        values.pop("id")
        await self._update(WebhookLogRow, request.id, values, "WebhookRequest")
        return request

    @staticmethod
    def _webhook_conditions(filters: WebhookFilters) -> list:
        conds = []
        if filters.date_from:
            conds.append(WebhookLogRow.created_at >= filters.date_from)
        if filters.date_to:
            conds.append(WebhookLogRow.created_at <= filters.date_to)
        if filters.statuses:
            conds.append(WebhookLogRow.status.in_([s.value for s in filters.statuses]))
        if filters.source_ips:
            conds.append(WebhookLogRow.source_ip.in_(filters.source_ips))
        if filters.user_agents:
            conds.append(WebhookLogRow.user_agent.in_(filters.user_agents))
        if filters.tickers:
            conds.append(WebhookLogRow.ticker.in_([t.upper() for t in filters.tickers]))
        if filters.min_processing_time is not None:
            conds.append(WebhookLogRow.processing_time >= filters.min_processing_time)
        if filters.max_processing_time is not None:
            conds.append(WebhookLogRow.processing_time <= filters.max_processing_time)
        if filters.min_payload_size is not None:
            conds.append(WebhookLogRow.payload_size >= filters.min_payload_size)
        if filters.max_payload_size is not None:
            conds.append(WebhookLogRow.payload_size <= filters.max_payload_size)
        return conds

    async def query_webhook_requests(self, filters: WebhookFilters) -> tuple[list[WebhookRequest], int]:
        conds = self._webhook_conditions(filters)
        sort_by = filters.sort_by if filters.sort_by in WEBHOOK_SORT_FIELDS else "created_at"
        column = getattr(WebhookLogRow, sort_by)
        order = column.asc() if filters.sort_order == "asc" else column.desc()

        total = await self._scalar(select(func.count()).select_from(WebhookLogRow).where(*conds)) or 0
        rows = await self._all(
            select(WebhookLogRow)
            .where(*conds)
            .order_by(order)
            .offset((filters.page - 1) * filters.limit)
            .limit(filters.limit)
        )
        return [_webhook_from_row(r) for r in rows], total

    async def list_webhook_requests(
        self, since: datetime, until: Optional[datetime] = None,
    ) -> list[WebhookRequest]:
        stmt = select(WebhookLogRow).where(WebhookLogRow.created_at >= since)
        if until is not None:
            stmt = stmt.where(WebhookLogRow.created_at <= until)
        rows = await self._all(stmt.order_by(WebhookLogRow.created_at.asc()))
        return [_webhook_from_row(r) for r in rows]

    # ── Processing stages ────────────────────────────────────────────

    async def create_stage(self, stage: ProcessingStage) -> ProcessingStage:
        try:
            await self._add(ProcessingStageRow(**_stage_to_values(stage)))
        except IntegrityError as exc:
            raise ConflictError(
                f"Stage {stage.stage.value} already exists for signal {stage.signal_id}"
            ) from exc
        return stage

    async def get_stage(self, stage_id: str) -> Optional[ProcessingStage]:
        row = await self._first(select(ProcessingStageRow).where(ProcessingStageRow.id == stage_id))
        return _stage_from_row(row) if row else None

    async def find_stage(self, signal_id: str, stage: ProcessingStageType) -> Optional[ProcessingStage]:
        row = await self._first(
            select(ProcessingStageRow).where(
                ProcessingStageRow.signal_id == signal_id,
                ProcessingStageRow.stage == stage.value,
            )
        )
        return _stage_from_row(row) if row else None

    async def update_stage(self, stage: ProcessingStage) -> ProcessingStage:
        values = _stage_to_values(stage)
        values.pop("id")
        await self._update(ProcessingStageRow, stage.id, values, "ProcessingStage")
        return stage

    async def list_stages(self, signal_id: str) -> list[ProcessingStage]:
        rows = await self._all(
            select(ProcessingStageRow)
            .where(ProcessingStageRow.signal_id == signal_id)
            .order_by(ProcessingStageRow.started_at.asc())
        )
        return [_stage_from_row(r) for r in rows]

    async def list_stages_by_status(self, status: StageStatus) -> list[ProcessingStage]:
        rows = await self._all(
            select(ProcessingStageRow)
            .where(ProcessingStageRow.status == status.value)
            .order_by(ProcessingStageRow.started_at.asc())
        )
        return [_stage_from_row(r) for r in rows]

    async def list_stages_since(self, since: datetime) -> list[ProcessingStage]:
        rows = await self._all(
            select(ProcessingStageRow)
            .where(ProcessingStageRow.started_at >= since)
            .order_by(ProcessingStageRow.started_at.asc())
        )
        return [_stage_from_row(r) for r in rows]

    # ── Metrics ──────────────────────────────────────────────────────

    async def save_metrics(self, snapshot: SystemMetrics) -> SystemMetrics:
        values = {name: getattr(snapshot, name) for name in _METRIC_FIELDS}
        await self._add(SystemMetricsRow(id=snapshot.id, timestamp=snapshot.timestamp, **values))
        return snapshot

    async def list_metrics(self, since: datetime, until: Optional[datetime] = None) -> list[SystemMetrics]:
        stmt = select(SystemMetricsRow).where(SystemMetricsRow.timestamp >= since)
        if until is not None:
            stmt = stmt.where(SystemMetricsRow.timestamp <= until)
        rows = await self._all(stmt.order_by(SystemMetricsRow.timestamp.asc()))
        return [_metrics_from_row(r) for r in rows]

    async def latest_metrics(self) -> Optional[SystemMetrics]:
        row = await self._first(select(SystemMetricsRow).order_by(SystemMetricsRow.timestamp.desc()))
        return _metrics_from_row(row) if row else None

    # ── Alerts ───────────────────────────────────────────────────────

    async def save_alert(self, alert: SystemAlert) -> SystemAlert:
        await self._add(SystemAlertRow(**_alert_to_values(alert)))
        return alert

    async def get_alert(self, alert_id: str) -> Optional[SystemAlert]:
        row = await self._first(select(SystemAlertRow).where(SystemAlertRow.id == alert_id))
        return _alert_from_row(row) if row else None

    async def update_alert(self, alert: SystemAlert) -> SystemAlert:
        values = _alert_to_values(alert)
        values.pop("id")
        await self._update(SystemAlertRow, alert.id, values, "SystemAlert")
        return alert

    async def list_alerts(
        self,
        since: Optional[datetime] = None,
        category: Optional[str] = None,
        active_only: bool = False,
    ) -> list[SystemAlert]:
        stmt = select(SystemAlertRow).order_by(SystemAlertRow.created_at.desc())
        if since is not None:
            stmt = stmt.where(SystemAlertRow.created_at >= since)
        if category is not None:
            stmt = stmt.where(SystemAlertRow.category == category)
        if active_only:
            stmt = stmt.where(SystemAlertRow.resolved.is_(False))
        return [_alert_from_row(r) for r in await self._all(stmt)]

    # ── Health ───────────────────────────────────────────────────────

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
