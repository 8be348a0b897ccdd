"""Pipeline monitoring: stage tracking, webhook telemetry, metrics and alerts.

Only configuration and records are exported here. Services are imported
from their modules, e.g. ``from src.monitoring.webhook_monitor import
WebhookMonitor``.
"""

from src.monitoring.config import (
    DEFAULT_MONITORING_CONFIG,
    PROCESSING_STAGE_ORDER,
    AlertCategory,
    AlertPolicy,
    AlertSeverity,
    AlertThresholds,
    AlertType,
    AnomalySeverity,
    Channel,
    EventName,
    HealthStatus,
    MonitoringConfig,
    ProcessingStageType,
    StageStatus,
    TrendDirection,
    WebhookStatus,
)
from src.monitoring.models import (
    Anomaly,
    AnomalyReport,
    MetricTrends,
    Page,
    PipelineStatus,
    ProcessingStage,
    StageInput,
    SystemAlert,
    SystemMetrics,
    WebhookFilters,
    WebhookRequest,
    WebhookRequestUpdate,
)

__all__ = [
    # Config
    "DEFAULT_MONITORING_CONFIG",
    "PROCESSING_STAGE_ORDER",
    "AlertCategory",
    "AlertPolicy",
    "AlertSeverity",
    "AlertThresholds",
    "AlertType",
    "AnomalySeverity",
    "Channel",
    "EventName",
    "HealthStatus",
    "MonitoringConfig",
    "ProcessingStageType",
    "StageStatus",
    "TrendDirection",
    "WebhookStatus",
    # Models
    "Anomaly",
    "AnomalyReport",
    "MetricTrends",
    "Page",
    "PipelineStatus",
    "ProcessingStage",
    "StageInput",
    "SystemAlert",
    "SystemMetrics",
    "WebhookFilters",
    "WebhookRequest",
    "WebhookRequestUpdate",
]
