"""Monitoring records.

Dataclasses for the facts the monitoring subsystem persists and the
views it derives from them. Open key-value bags (``metadata``,
``headers``, ``payload``, ``details``) stay plain dicts; every field the
pipeline or the alert rules read is a named attribute.
"""

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from src.monitoring.config import (
    AlertCategory,
    AlertSeverity,
    AnomalySeverity,
    DEFAULT_PAGE,
    DEFAULT_PAGE_LIMIT,
    ProcessingStageType,
    StageStatus,
    TrendDirection,
    WebhookStatus,
)

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# =====================================================================
# Processing stages
# =====================================================================


@dataclass
class StageInput:
    """Arguments for starting a processing stage."""
    signal_id: str
    stage: ProcessingStageType
    status: StageStatus = StageStatus.IN_PROGRESS
    metadata: dict[str, Any] = field(default_factory=dict)
    error_message: Optional[str] = None


@dataclass
class ProcessingStage:
    """One named step of one signal's pipeline.

    ``duration`` is milliseconds and is only ever computed from
    ``completed_at - started_at``.
    """
    signal_id: str
    stage: ProcessingStageType
    status: StageStatus = StageStatus.IN_PROGRESS
    id: str = field(default_factory=lambda: new_id("stage"))
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    duration: Optional[float] = None
    error_message: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_open(self) -> bool:
        return self.status == StageStatus.IN_PROGRESS

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "signal_id": self.signal_id,
            "stage": self.stage.value,
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "duration": self.duration,
            "error_message": self.error_message,
            "metadata": dict(self.metadata),
        }


@dataclass
class PipelineStatus:
    """Aggregate lifecycle state derived from all stages of a signal."""
    signal_id: str
    stages: list[ProcessingStage]
    current_stage: ProcessingStageType
    status: StageStatus
    total_processing_time: float = 0.0
    estimated_completion: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "signal_id": self.signal_id,
            "stages": [s.to_dict() for s in self.stages],
            "current_stage": self.current_stage.value,
            "status": self.status.value,
            "total_processing_time": self.total_processing_time,
            "estimated_completion": _iso(self.estimated_completion),
        }


# =====================================================================
# Webhook requests
# =====================================================================


@dataclass
class WebhookRequest:
    """One inbound signal request as seen by the ingress."""
    source_ip: str
    headers: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)
    payload_size: int = 0
    processing_time: float = 0.0
    status: WebhookStatus = WebhookStatus.SUCCESS
    user_agent: Optional[str] = None
    signature: Optional[str] = None
    error_message: Optional[str] = None
    error_stack: Optional[str] = None
    signal_id: Optional[str] = None
    id: str = field(default_factory=lambda: new_id("wh"))
    created_at: datetime = field(default_factory=utcnow)

    @property
    def ticker(self) -> Optional[str]:
        value = self.payload.get("ticker")
        return str(value).upper() if value else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "created_at": _iso(self.created_at),
            "source_ip": self.source_ip,
            "user_agent": self.user_agent,
            "headers": dict(self.headers),
            "payload": dict(self.payload),
            "payload_size": self.payload_size,
            "signature": self.signature,
            "processing_time": self.processing_time,
            "status": self.status.value,
            "error_message": self.error_message,
            "error_stack": self.error_stack,
            "signal_id": self.signal_id,
        }


@dataclass
class WebhookRequestUpdate:
    """Fields that may be filled in after a request was first recorded."""
    signal_id: Optional[str] = None
    processing_time: Optional[float] = None
    status: Optional[WebhookStatus] = None
    error_message: Optional[str] = None
    error_stack: Optional[str] = None


@dataclass
class WebhookFilters:
    """Query filters for paginated webhook-request listings."""
    time_range: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    statuses: list[WebhookStatus] = field(default_factory=list)
    source_ips: list[str] = field(default_factory=list)
    user_agents: list[str] = field(default_factory=list)
    tickers: list[str] = field(default_factory=list)
    min_processing_time: Optional[float] = None
    max_processing_time: Optional[float] = None
    min_payload_size: Optional[int] = None
    max_payload_size: Optional[int] = None
    page: int = DEFAULT_PAGE
    limit: int = DEFAULT_PAGE_LIMIT
    sort_by: str = "created_at"
    sort_order: str = "desc"

    def matches(self, request: WebhookRequest) -> bool:
        """Predicate form of the filters, ignoring paging and time_range.

        ``time_range`` must already be resolved into ``date_from``.
        """
        if self.date_from and request.created_at < self.date_from:
            return False
        if self.date_to and request.created_at > self.date_to:
            return False
        if self.statuses and request.status not in self.statuses:
            return False
        if self.source_ips and request.source_ip not in self.source_ips:
            return False
        if self.user_agents and request.user_agent not in self.user_agents:
            return False
        if self.tickers and request.ticker not in {t.upper() for t in self.tickers}:
            return False
        if self.min_processing_time is not None and request.processing_time < self.min_processing_time:
            return False
        if self.max_processing_time is not None and request.processing_time > self.max_processing_time:
            return False
        if self.min_payload_size is not None and request.payload_size < self.min_payload_size:
            return False
        if self.max_payload_size is not None and request.payload_size > self.max_payload_size:
            return False
        return True


@dataclass
class Page(Generic[T]):
    """One page of a paginated query."""
    items: list[T]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    def to_dict(self) -> dict:
        return {
            "data": [item.to_dict() for item in self.items],
            "pagination": {
                "page": self.page,
                "limit": self.limit,
                "total": self.total,
                "total_pages": self.total_pages,
                "has_next": self.has_next,
                "has_prev": self.has_prev,
            },
        }


# =====================================================================
# Metrics
# =====================================================================


@dataclass
class SystemMetrics:
    """Immutable point-in-time snapshot of system and business counters."""
    webhooks_per_minute: float = 0.0
    avg_processing_time: float = 0.0
    error_rate: float = 0.0
    queue_depth: int = 0
    memory_usage: float = 0.0
    cpu_usage: float = 0.0
    db_connections: int = 0
    signals_processed: int = 0
    trades_executed: int = 0
    decisions_approved: int = 0
    decisions_rejected: int = 0
    id: str = field(default_factory=lambda: new_id("met"))
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": _iso(self.timestamp),
            "webhooks_per_minute": self.webhooks_per_minute,
            "avg_processing_time": round(self.avg_processing_time, 2),
            "error_rate": round(self.error_rate, 2),
            "queue_depth": self.queue_depth,
            "memory_usage": round(self.memory_usage, 2),
            "cpu_usage": round(self.cpu_usage, 2),
            "db_connections": self.db_connections,
            "signals_processed": self.signals_processed,
            "trades_executed": self.trades_executed,
            "decisions_approved": self.decisions_approved,
            "decisions_rejected": self.decisions_rejected,
        }


@dataclass
class MetricTrends:
    webhook_volume: TrendDirection = TrendDirection.STABLE
    processing_time: TrendDirection = TrendDirection.STABLE
    error_rate: TrendDirection = TrendDirection.STABLE
    queue_depth: TrendDirection = TrendDirection.STABLE

    def to_dict(self) -> dict:
        return {
            "webhook_volume": self.webhook_volume.value,
            "processing_time": self.processing_time.value,
            "error_rate": self.error_rate.value,
            "queue_depth": self.queue_depth.value,
        }


@dataclass
class Anomaly:
    """A metric sample whose z-score exceeded the anomaly threshold."""
    metric: str
    timestamp: datetime
    value: float
    z_score: float
    severity: AnomalySeverity
    expected_low: float
    expected_high: float

    def to_dict(self) -> dict:
        return {
            "metric": self.metric,
            "timestamp": _iso(self.timestamp),
            "value": self.value,
            "z_score": round(self.z_score, 3),
            "severity": self.severity.value,
            "expected_range": [round(self.expected_low, 3), round(self.expected_high, 3)],
        }


@dataclass
class AnomalyReport:
    anomalies: list[Anomaly] = field(default_factory=list)

    @property
    def total_anomalies(self) -> int:
        return len(self.anomalies)

    @property
    def high_severity_count(self) -> int:
        return sum(1 for a in self.anomalies if a.severity == AnomalySeverity.HIGH)

    @property
    def affected_metrics(self) -> list[str]:
        return sorted({a.metric for a in self.anomalies})

    def to_dict(self) -> dict:
        return {
            "anomalies": [a.to_dict() for a in self.anomalies],
            "summary": {
                "total_anomalies": self.total_anomalies,
                "high_severity_count": self.high_severity_count,
                "affected_metrics": self.affected_metrics,
            },
        }


# =====================================================================
# Alerts
# =====================================================================


@dataclass
class SystemAlert:
    """A raised alert. Acknowledge and resolve are one-way flags."""
    type: str
    severity: AlertSeverity
    category: AlertCategory
    title: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    escalated: bool = False
    id: str = field(default_factory=lambda: new_id("alert"))
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_active(self) -> bool:
        return not self.resolved

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "severity": self.severity.value,
            "category": self.category.value,
            "title": self.title,
            "message": self.message,
            "details": dict(self.details),
            "acknowledged": self.acknowledged,
            "acknowledged_at": _iso(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "resolved": self.resolved,
            "resolved_at": _iso(self.resolved_at),
            "escalated": self.escalated,
            "created_at": _iso(self.created_at),
        }
