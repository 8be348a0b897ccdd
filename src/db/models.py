"""SQLAlchemy ORM models.

Tables:
- signals: Inbound trading signals and their pipeline status
- enriched_data: Market-data enrichment per signal
- trading_rules: Versioned decision rule sets
- decisions: Decision engine verdicts
- trades: One row per (logical trade, broker)
- webhook_logs: Inbound webhook requests
- processing_stages: Per-signal pipeline stage lifecycle
- system_metrics: Append-only metric snapshots
- system_alerts: Raised alerts and their ack/resolve state
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from src.db.base import Base


class SignalRow(Base):
    """Inbound trading signal."""

    __tablename__ = "signals"

    id = Column(String(40), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    ticker = Column(String(20), nullable=False, index=True)
    action = Column(String(30), nullable=False)
    entry_price = Column(Float, nullable=False)
    timeframe_minutes = Column(Integer, nullable=False, default=5)
    quality = Column(Integer, nullable=False, default=0)
    stop_loss = Column(Float)
    target1 = Column(Float)
    atr = Column(Float)
    status = Column(String(20), nullable=False, index=True)
    raw_payload = Column(JSON, nullable=False, default=dict)


class EnrichedDataRow(Base):
    """Market-data enrichment output for a signal."""

    __tablename__ = "enriched_data"

    id = Column(String(40), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    signal_id = Column(String(40), ForeignKey("signals.id", ondelete="CASCADE"), nullable=False, index=True)
    data_quality = Column(Float, nullable=False)
    aggregated_data = Column(JSON, nullable=False, default=dict)


class TradingRulesRow(Base):
    """Versioned rule set consumed by the decision engine."""

    __tablename__ = "trading_rules"

    id = Column(String(40), primary_key=True)
    version = Column(String(30), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    is_active = Column(Boolean, nullable=False, default=False, index=True)
    min_quality = Column(Integer, nullable=False, default=4)
    min_confidence = Column(Float, nullable=False, default=0.65)
    max_risk_percent = Column(Float, nullable=False, default=2.0)
    weights = Column(JSON, nullable=False, default=dict)
    parameters = Column(JSON, nullable=False, default=dict)


class DecisionRow(Base):
    """Decision engine verdict for a signal."""

    __tablename__ = "decisions"

    id = Column(String(40), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    signal_id = Column(String(40), ForeignKey("signals.id", ondelete="CASCADE"), nullable=False, index=True)
    decision = Column(String(10), nullable=False)
    confidence = Column(Float, nullable=False)
    instrument_type = Column(String(20))
    quantity = Column(Integer)
    position_size = Column(Float)
    call_strike = Column(Float)
    put_strike = Column(Float)
    expiration = Column(Date)
    risk_amount = Column(Float)
    expected_return = Column(Float)
    risk_reward_ratio = Column(Float)
    win_probability = Column(Float)
    model_version = Column(String(30), nullable=False)
    reasoning = Column(JSON, nullable=False, default=dict)
    weights = Column(JSON, nullable=False, default=dict)


class TradeRow(Base):
    """One broker's outcome for one logical trade."""

    __tablename__ = "trades"

    trade_id = Column(String(80), primary_key=True)
    signal_id = Column(String(40), ForeignKey("signals.id", ondelete="CASCADE"), nullable=False, index=True)
    broker = Column(String(20), nullable=False)
    order_id = Column(String(100), nullable=False)
    symbol = Column(String(20), nullable=False, index=True)
    instrument_type = Column(String(20), nullable=False)
    side = Column(String(10), nullable=False)
    quantity = Column(Float, nullable=False)
    entry_price = Column(Float, nullable=False)
    entry_value = Column(Float, nullable=False)
    stop_loss = Column(Float)
    target1 = Column(Float)
    strike = Column(Float)
    expiration = Column(String(10))
    trailing = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, index=True)
    broker_data = Column(JSON, nullable=False, default=dict)
    entered_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
    exit_price = Column(Float)
    exited_at = Column(DateTime(timezone=True))
    pnl = Column(Float)


class WebhookLogRow(Base):
    """Inbound webhook request."""

    __tablename__ = "webhook_logs"

    id = Column(String(40), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    source_ip = Column(String(64), nullable=False, index=True)
    user_agent = Column(String(500))
    headers = Column(JSON, nullable=False, default=dict)
    payload = Column(JSON, nullable=False, default=dict)
    payload_size = Column(Integer, nullable=False, default=0)
    signature = Column(String(200))
    processing_time = Column(Float, nullable=False, default=0)
    status = Column(String(20), nullable=False, index=True)
    error_message = Column(Text)
    error_stack = Column(Text)
    signal_id = Column(String(40), index=True)
    ticker = Column(String(20), index=True)

    __table_args__ = (
        Index("ix_webhook_logs_created_status", "created_at", "status"),
    )


class ProcessingStageRow(Base):
    """Lifecycle of one named stage for one signal."""

    __tablename__ = "processing_stages"

    id = Column(String(40), primary_key=True)
    signal_id = Column(String(40), nullable=False, index=True)
    stage = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, index=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))
    duration = Column(Float)
    error_message = Column(Text)
    # "metadata" is reserved on declarative classes
    stage_metadata = Column("metadata", JSON, nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("signal_id", "stage", name="uq_processing_stages_signal_stage"),
    )


class SystemMetricsRow(Base):
    """Point-in-time system metric snapshot."""

    __tablename__ = "system_metrics"

    id = Column(String(40), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    webhooks_per_minute = Column(Float, nullable=False, default=0)
    avg_processing_time = Column(Float, nullable=False, default=0)
    error_rate = Column(Float, nullable=False, default=0)
    queue_depth = Column(Integer, nullable=False, default=0)
    memory_usage = Column(Float, nullable=False, default=0)
    cpu_usage = Column(Float, nullable=False, default=0)
    db_connections = Column(Integer, nullable=False, default=0)
    signals_processed = Column(Integer, nullable=False, default=0)
    trades_executed = Column(Integer, nullable=False, default=0)
    decisions_approved = Column(Integer, nullable=False, default=0)
    decisions_rejected = Column(Integer, nullable=False, default=0)


class SystemAlertRow(Base):
    """Raised monitoring alert."""

    __tablename__ = "system_alerts"

    id = Column(String(40), primary_key=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    type = Column(String(40), nullable=False)
    severity = Column(String(20), nullable=False, index=True)
    category = Column(String(20), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=False, default=dict)
    acknowledged = Column(Boolean, nullable=False, default=False)
    acknowledged_at = Column(DateTime(timezone=True))
    acknowledged_by = Column(String(100))
    resolved = Column(Boolean, nullable=False, default=False, index=True)
    resolved_at = Column(DateTime(timezone=True))
    escalated = Column(Boolean, nullable=False, default=False)
