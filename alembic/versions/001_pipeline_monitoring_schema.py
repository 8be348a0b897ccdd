"""Signal pipeline and monitoring schema.

Revision ID: 001
Revises: None
Create Date: 2026-10-16
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- signals ---
    op.create_table(
        "signals",
        sa.Column("id", sa.String(40), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("ticker", sa.String(20), nullable=False),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("entry_price", sa.Float(), nullable=False),
        sa.Column("timeframe_minutes", sa.Integer(), nullable=False),
        sa.Column("quality", sa.Integer(), nullable=False),
        sa.Column("stop_loss", sa.Float(), nullable=True),
        sa.Column("target1", sa.Float(), nullable=True),
        sa.Column("atr", sa.Float(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("raw_payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_signals_created_at", "signals", ["created_at"])
    op.create_index("ix_signals_ticker", "signals", ["ticker"])
    op.create_index("ix_signals_status", "signals", ["status"])

    # --- enriched_data ---
    op.create_table(
        "enriched_data",
        sa.Column("id", sa.String(40), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("signal_id", sa.String(40), nullable=False),
        sa.Column("data_quality", sa.Float(), nullable=False),
        sa.Column("aggregated_data", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["signal_id"], ["signals.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_enriched_data_signal_id", "enriched_data", ["signal_id"])

    # --- trading_rules ---
    op.create_table(
        "trading_rules",
        sa.Column("id", sa.String(40), nullable=False),
        sa.Column("version", sa.String(30), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("min_quality", sa.Integer(), nullable=False),
        sa.Column("min_confidence", sa.Float(), nullable=False),
        sa.Column("max_risk_percent", sa.Float(), nullable=False),
        sa.Column("weights", sa.JSON(), nullable=False),
        sa.Column("parameters", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_trading_rules_is_active", "trading_rules", ["is_active"])

    # --- decisions ---
    op.create_table(
        "decisions",
        sa.Column("id", sa.String(40), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("signal_id", sa.String(40), nullable=False),
        sa.Column("decision", sa.String(10), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("instrument_type", sa.String(20), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=True),
        sa.Column("position_size", sa.Float(), nullable=True),
        sa.Column("call_strike", sa.Float(), nullable=True),
        sa.Column("put_strike", sa.Float(), nullable=True),
        sa.Column("expiration", sa.Date(), nullable=True),
        sa.Column("risk_amount", sa.Float(), nullable=True),
        sa.Column("expected_return", sa.Float(), nullable=True),
        sa.Column("risk_reward_ratio", sa.Float(), nullable=True),
        sa.Column("win_probability", sa.Float(), nullable=True),
        sa.Column("model_version", sa.String(30), nullable=False),
        sa.Column("reasoning", sa.JSON(), nullable=False),
        sa.Column("weights", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["signal_id"], ["signals.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_decisions_created_at", "decisions", ["created_at"])
    op.create_index("ix_decisions_signal_id", "decisions", ["signal_id"])

    # --- trades ---
    op.create_table(
        "trades",
        sa.Column("trade_id", sa.String(80), nullable=False),
        sa.Column("signal_id", sa.String(40), nullable=False),
        sa.Column("broker", sa.String(20), nullable=False),
        sa.Column("order_id", sa.String(100), nullable=False),
        sa.Column("symbol", sa.String(20), nullable=False),
        sa.Column("instrument_type", sa.String(20), nullable=False),
        sa.Column("side", sa.String(10), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("entry_price", sa.Float(), nullable=False),
        sa.Column("entry_value", sa.Float(), nullable=False),
        sa.Column("stop_loss", sa.Float(), nullable=True),
        sa.Column("target1", sa.Float(), nullable=True),
        sa.Column("strike", sa.Float(), nullable=True),
        sa.Column("expiration", sa.String(10), nullable=True),
        sa.Column("trailing", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("broker_data", sa.JSON(), nullable=False),
        sa.Column("entered_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("exit_price", sa.Float(), nullable=True),
        sa.Column("exited_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pnl", sa.Float(), nullable=True),
        sa.PrimaryKeyConstraint("trade_id"),
        sa.ForeignKeyConstraint(["signal_id"], ["signals.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_trades_signal_id", "trades", ["signal_id"])
    op.create_index("ix_trades_symbol", "trades", ["symbol"])
    op.create_index("ix_trades_status", "trades", ["status"])
    op.create_index("ix_trades_entered_at", "trades", ["entered_at"])

    # --- webhook_logs ---
    op.create_table(
        "webhook_logs",
        sa.Column("id", sa.String(40), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("source_ip", sa.String(64), nullable=False),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("headers", sa.JSON(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("payload_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("signature", sa.String(200), nullable=True),
        sa.Column("processing_time", sa.Float(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_stack", sa.Text(), nullable=True),
        sa.Column("signal_id", sa.String(40), nullable=True),
        sa.Column("ticker", sa.String(20), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_webhook_logs_source_ip", "webhook_logs", ["source_ip"])
    op.create_index("ix_webhook_logs_status", "webhook_logs", ["status"])
    op.create_index("ix_webhook_logs_signal_id", "webhook_logs", ["signal_id"])
    op.create_index("ix_webhook_logs_ticker", "webhook_logs", ["ticker"])
    op.create_index("ix_webhook_logs_created_status", "webhook_logs", ["created_at", "status"])

    # --- processing_stages ---
    op.create_table(
        "processing_stages",
        sa.Column("id", sa.String(40), nullable=False),
        sa.Column("signal_id", sa.String(40), nullable=False),
        sa.Column("stage", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("signal_id", "stage", name="uq_processing_stages_signal_stage"),
    )
    op.create_index("ix_processing_stages_signal_id", "processing_stages", ["signal_id"])
    op.create_index("ix_processing_stages_status", "processing_stages", ["status"])

    # --- system_metrics ---
    op.create_table(
        "system_metrics",
        sa.Column("id", sa.String(40), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("webhooks_per_minute", sa.Float(), nullable=False, server_default="0"),
        sa.Column("avg_processing_time", sa.Float(), nullable=False, server_default="0"),
        sa.Column("error_rate", sa.Float(), nullable=False, server_default="0"),
        sa.Column("queue_depth", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("memory_usage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("cpu_usage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("db_connections", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("signals_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("trades_executed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("decisions_approved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("decisions_rejected", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_system_metrics_timestamp", "system_metrics", ["timestamp"])

    # --- system_alerts ---
    op.create_table(
        "system_alerts",
        sa.Column("id", sa.String(40), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("acknowledged", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_by", sa.String(100), nullable=True),
        sa.Column("resolved", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("escalated", sa.Boolean(), nullable=False, server_default="false"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_system_alerts_created_at", "system_alerts", ["created_at"])
    op.create_index("ix_system_alerts_severity", "system_alerts", ["severity"])
    op.create_index("ix_system_alerts_category", "system_alerts", ["category"])
    op.create_index("ix_system_alerts_resolved", "system_alerts", ["resolved"])


def downgrade() -> None:
    op.drop_table("system_alerts")
    op.drop_table("system_metrics")
    op.drop_table("processing_stages")
    op.drop_table("webhook_logs")
    op.drop_table("trades")
    op.drop_table("decisions")
    op.drop_table("trading_rules")
    op.drop_table("enriched_data")
    op.drop_table("signals")
