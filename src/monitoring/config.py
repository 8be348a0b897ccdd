"""Monitoring configuration.

Enums shared by the stage tracker, webhook monitor, metrics collector
and alerting, plus the tunable thresholds that drive them.
"""

from dataclasses import dataclass, field
from enum import Enum


class ProcessingStageType(str, Enum):
    """Named steps of a signal's pipeline lifecycle."""
    RECEIVED = "received"
    ENRICHING = "enriching"
    ENRICHED = "enriched"
    DECIDING = "deciding"
    DECIDED = "decided"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


class StageStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class WebhookStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    REJECTED = "rejected"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AlertCategory(str, Enum):
    WEBHOOK = "webhook"
    PROCESSING = "processing"
    SYSTEM = "system"
    PERFORMANCE = "performance"
    SECURITY = "security"


class AlertType(str, Enum):
    """Threshold rules an alert can originate from."""
    HIGH_PROCESSING_TIME = "high_processing_time"
    HIGH_ERROR_RATE = "high_error_rate"
    CONSECUTIVE_FAILURES = "consecutive_failures"
    LARGE_PAYLOAD = "large_payload"
    HIGH_MEMORY_USAGE = "high_memory_usage"
    HIGH_CPU_USAGE = "high_cpu_usage"
    HIGH_QUEUE_DEPTH = "high_queue_depth"
    HIGH_DB_CONNECTIONS = "high_db_connections"
    STAGE_TIMEOUT = "stage_timeout"
    STAGE_FAILURE = "stage_failure"
    SYSTEM_OVERLOAD = "system_overload"


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class AnomalySeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class Channel(str, Enum):
    """Broadcast channels."""
    WEBHOOKS = "monitoring.webhooks"
    STAGES = "monitoring.stages"
    ALERTS = "monitoring.alerts"
    METRICS = "monitoring.metrics"
    HEALTH = "monitoring.health"
    SYSTEM = "monitoring.system"


class EventName(str, Enum):
    """Broadcast event names."""
    WEBHOOK_RECEIVED = "webhook.received"
    WEBHOOK_PROCESSED = "webhook.processed"
    WEBHOOK_FAILED = "webhook.failed"
    STAGE_STARTED = "stage.started"
    STAGE_COMPLETED = "stage.completed"
    STAGE_FAILED = "stage.failed"
    ALERT_CREATED = "alert.created"
    ALERT_ACKNOWLEDGED = "alert.acknowledged"
    ALERT_RESOLVED = "alert.resolved"
    METRICS_UPDATED = "metrics.updated"
    HEALTH_CHANGED = "health.changed"


# Fixed pipeline order used for completion estimates. "failed" is a valid
# stage type but never part of the happy path.
PROCESSING_STAGE_ORDER: tuple[ProcessingStageType, ...] = (
    ProcessingStageType.RECEIVED,
    ProcessingStageType.ENRICHING,
    ProcessingStageType.ENRICHED,
    ProcessingStageType.DECIDING,
    ProcessingStageType.DECIDED,
    ProcessingStageType.EXECUTING,
    ProcessingStageType.COMPLETED,
)

# Named time ranges in seconds
TIME_RANGES: dict[str, int] = {
    "last_hour": 3600,
    "last_4_hours": 14400,
    "last_24_hours": 86400,
    "last_7_days": 604800,
    "last_30_days": 2592000,
}

DEFAULT_PAGE = 1
DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 1000

ALERT_SEVERITY_PRIORITY: tuple[AlertSeverity, ...] = (
    AlertSeverity.CRITICAL,
    AlertSeverity.ERROR,
    AlertSeverity.WARNING,
    AlertSeverity.INFO,
)


@dataclass
class AlertThresholds:
    """Thresholds the AlertEvaluator compares against."""

    # Webhook rules
    processing_time_ms: float = 5000.0
    error_rate_pct: float = 10.0
    consecutive_failures: int = 5
    payload_size_bytes: int = 10 * 1024 * 1024

    # System rules
    memory_usage_pct: float = 85.0
    cpu_usage_pct: float = 80.0
    queue_depth: int = 150
    db_connections: int = 80

    # Stage rules
    stage_timeout_ms: float = 15000.0
    stage_failure_rate_pct: float = 15.0
    monitored_stages: tuple[ProcessingStageType, ...] = (
        ProcessingStageType.ENRICHING,
        ProcessingStageType.DECIDING,
        ProcessingStageType.EXECUTING,
    )


@dataclass
class AlertPolicy:
    """Suppression, auto-resolve and escalation windows."""

    suppression_window_minutes: float = 15.0
    auto_resolve_after_minutes: float = 60.0
    escalate_after_minutes: float = 30.0
    stage_failure_window_minutes: float = 60.0
    escalation_channels: list[str] = field(default_factory=lambda: ["email"])
    severity_overrides: dict[AlertType, AlertSeverity] = field(default_factory=lambda: {
        AlertType.HIGH_PROCESSING_TIME: AlertSeverity.WARNING,
        AlertType.HIGH_ERROR_RATE: AlertSeverity.ERROR,
        AlertType.SYSTEM_OVERLOAD: AlertSeverity.CRITICAL,
        AlertType.STAGE_TIMEOUT: AlertSeverity.WARNING,
    })


@dataclass
class MonitoringConfig:
    """Configuration for the monitoring subsystem."""

    thresholds: AlertThresholds = field(default_factory=AlertThresholds)
    policy: AlertPolicy = field(default_factory=AlertPolicy)

    # Trend and anomaly detection
    trend_threshold: float = 0.10
    anomaly_z_threshold: float = 2.0
    anomaly_medium_z: float = 2.5
    anomaly_high_z: float = 3.0
    min_anomaly_points: int = 10
    default_lookback_hours: float = 24.0

    # Pipeline status
    default_stage_duration_ms: float = 5000.0

    # Health
    queue_capacity: int = 1000
    degraded_memory_pct: float = 90.0
    degraded_queue_utilization_pct: float = 90.0
    degraded_error_rate_pct: float = 20.0

    # In-memory metric buffers
    metrics_buffer_size: int = 1000
    metrics_retention_seconds: float = 300.0
    cpu_sample_seconds: float = 0.1
    max_db_connections_estimate: int = 10


DEFAULT_MONITORING_CONFIG = MonitoringConfig()
