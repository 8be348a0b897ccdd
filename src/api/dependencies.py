"""FastAPI Dependencies.

The ``PipelineService`` is built once per application and kept on
``app.state``; routes reach its components through these helpers.
"""

from fastapi import Request

from src.monitoring.alerts import AlertManager
from src.monitoring.metrics_collector import MetricsCollector
from src.monitoring.webhook_monitor import WebhookMonitor
from src.signal_pipeline.service import PipelineService


def get_service(request: Request) -> PipelineService:
    return request.app.state.service


def get_monitor(request: Request) -> WebhookMonitor:
    return get_service(request).monitor


def get_metrics(request: Request) -> MetricsCollector:
    return get_service(request).metrics


def get_alerts(request: Request) -> AlertManager:
    return get_service(request).alerts
