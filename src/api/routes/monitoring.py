"""Monitoring API Routes.

Webhook request log, processing stages, pipeline status, metrics,
health and alerts.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from src.api.dependencies import get_alerts, get_metrics, get_monitor
from src.api.models import (
    AcknowledgeRequest,
    StageCompleteRequest,
    StageStartRequest,
    WebhookRequestCreate,
    WebhookRequestPatch,
)
from src.api_errors.exceptions import NotFoundError
from src.monitoring.alerts import AlertManager
from src.monitoring.config import AlertCategory, WebhookStatus
from src.monitoring.metrics_collector import MetricsCollector
from src.monitoring.models import WebhookFilters
from src.monitoring.webhook_monitor import WebhookMonitor

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/monitoring", tags=["Monitoring"])


# ── Webhook requests ─────────────────────────────────────────────────


@router.post("/webhooks", status_code=201)
async def record_webhook(body: WebhookRequestCreate, monitor: WebhookMonitor = Depends(get_monitor)) -> dict:
    request = await monitor.record_webhook_request(body.to_record())
    return request.to_dict()


@router.get("/webhooks")
async def list_webhooks(
    time_range: Optional[str] = None,
    status: Optional[list[WebhookStatus]] = Query(default=None),
    source_ip: Optional[list[str]] = Query(default=None),
    ticker: Optional[list[str]] = Query(default=None),
    min_processing_time: Optional[float] = None,
    max_processing_time: Optional[float] = None,
    page: int = 1,
    limit: int = 50,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    monitor: WebhookMonitor = Depends(get_monitor),
) -> dict:
    filters = WebhookFilters(
        time_range=time_range,
        statuses=status or [],
        source_ips=source_ip or [],
        tickers=ticker or [],
        min_processing_time=min_processing_time,
        max_processing_time=max_processing_time,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    result = await monitor.get_webhook_requests(filters)
    return result.to_dict()


@router.get("/webhooks/{request_id}")
async def get_webhook(request_id: str, monitor: WebhookMonitor = Depends(get_monitor)) -> dict:
    request = await monitor.get_webhook_request(request_id)
    if request is None:
        raise NotFoundError("WebhookRequest", request_id)
    return request.to_dict()


@router.patch("/webhooks/{request_id}")
async def update_webhook(
    request_id: str, body: WebhookRequestPatch, monitor: WebhookMonitor = Depends(get_monitor),
) -> dict:
    request = await monitor.update_webhook_request(request_id, body.to_update())
    return request.to_dict()


# ── Processing stages ────────────────────────────────────────────────


@router.get("/stages")
async def active_stages(monitor: WebhookMonitor = Depends(get_monitor)) -> list[dict]:
    return [s.to_dict() for s in await monitor.get_active_processing_stages()]


@router.post("/stages", status_code=201)
async def start_stage(body: StageStartRequest, monitor: WebhookMonitor = Depends(get_monitor)) -> dict:
    stage = await monitor.start_processing_stage(body.to_input())
    return stage.to_dict()


@router.post("/stages/{stage_id}/complete")
async def complete_stage(
    stage_id: str, body: StageCompleteRequest, monitor: WebhookMonitor = Depends(get_monitor),
) -> dict:
    stage = await monitor.complete_processing_stage(stage_id, body.status, body.metadata, body.error_message)
    return stage.to_dict()


@router.get("/stages/{signal_id}")
async def signal_stages(signal_id: str, monitor: WebhookMonitor = Depends(get_monitor)) -> list[dict]:
    return [s.to_dict() for s in await monitor.get_processing_stages(signal_id)]


@router.get("/pipeline/{signal_id}")
async def pipeline_status(signal_id: str, monitor: WebhookMonitor = Depends(get_monitor)) -> dict:
    status = await monitor.get_pipeline_status(signal_id)
    if status is None:
        raise NotFoundError("PipelineStatus", signal_id)
    return status.to_dict()


# ── Metrics ──────────────────────────────────────────────────────────


@router.get("/metrics")
async def performance_metrics(
    time_range: str = "last_24_hours",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    monitor: WebhookMonitor = Depends(get_monitor),
) -> dict:
    return await monitor.get_performance_metrics(time_range, start, end)


@router.get("/metrics/realtime")
async def real_time_metrics(monitor: WebhookMonitor = Depends(get_monitor)) -> dict:
    return await monitor.get_real_time_metrics()


@router.get("/metrics/history")
async def metrics_history(
    time_range: str = "last_24_hours",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    interval: Optional[str] = None,
    metrics: MetricsCollector = Depends(get_metrics),
) -> list[dict]:
    snapshots = await metrics.get_historical_metrics(time_range, start, end, interval)
    return [s.to_dict() for s in snapshots]


@router.get("/metrics/aggregated")
async def metrics_aggregated(
    time_range: str = "last_24_hours",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    metrics: MetricsCollector = Depends(get_metrics),
) -> dict:
    return await metrics.get_aggregated_metrics(time_range, start, end)


@router.get("/metrics/chart/{metric}")
async def metrics_chart(
    metric: str, time_range: str = "last_24_hours", metrics: MetricsCollector = Depends(get_metrics),
) -> dict:
    return await metrics.get_chart_data(metric, time_range)


@router.get("/statistics")
async def processing_statistics(
    time_range: Optional[str] = "last_24_hours", monitor: WebhookMonitor = Depends(get_monitor),
) -> dict:
    return await monitor.get_processing_statistics(WebhookFilters(time_range=time_range))


@router.get("/trends")
async def trends(
    time_range: str = "last_24_hours",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    metrics: MetricsCollector = Depends(get_metrics),
) -> dict:
    result = await metrics.calculate_trends(time_range, start, end)
    return result.to_dict()


@router.get("/anomalies")
async def anomalies(
    lookback_hours: Optional[float] = Query(default=None, gt=0),
    metrics: MetricsCollector = Depends(get_metrics),
) -> dict:
    report = await metrics.detect_anomalies(lookback_hours)
    return report.to_dict()


@router.get("/health")
async def system_health(monitor: WebhookMonitor = Depends(get_monitor)) -> dict:
    return await monitor.get_system_health()


# ── Alerts ───────────────────────────────────────────────────────────


@router.get("/alerts")
async def list_alerts(
    category: Optional[AlertCategory] = None,
    active_only: bool = True,
    alerts: AlertManager = Depends(get_alerts),
) -> list[dict]:
    if active_only:
        items = await alerts.list_active(category)
    else:
        items = await alerts.list_alerts(category=category)
    return [a.to_dict() for a in items]


@router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(
    alert_id: str,
    body: Optional[AcknowledgeRequest] = None,
    alerts: AlertManager = Depends(get_alerts),
) -> dict:
    by = body.acknowledged_by if body else "api"
    alert = await alerts.acknowledge(alert_id, by)
    return alert.to_dict()


@router.post("/alerts/{alert_id}/resolve")
async def resolve_alert(alert_id: str, alerts: AlertManager = Depends(get_alerts)) -> dict:
    alert = await alerts.resolve(alert_id)
    return alert.to_dict()
