"""Webhook monitoring facade.

One object the ingress, the pipeline and the API talk to: webhook
request logging and queries, processing-stage tracking (delegated to
``StageTracker``) and the derived performance and health views.

Side effects that only feed monitoring (metric buffers, alert rules,
broadcasts) never fail the call that triggered them.
"""

import asyncio
import dataclasses
import logging
import time
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from src.api_errors.exceptions import NotFoundError, ValidationError
from src.monitoring.alerts import AlertManager
from src.monitoring.broadcaster import BroadcastSink
from src.monitoring.config import (
    ALERT_SEVERITY_PRIORITY,
    DEFAULT_MONITORING_CONFIG,
    MAX_PAGE_LIMIT,
    HealthStatus,
    MonitoringConfig,
    StageStatus,
    WebhookStatus,
)
from src.monitoring.guards import store_operation
from src.monitoring.metrics_collector import MetricsCollector
from src.monitoring.models import (
    Page,
    PipelineStatus,
    ProcessingStage,
    StageInput,
    WebhookFilters,
    WebhookRequest,
    WebhookRequestUpdate,
    utcnow,
)
from src.monitoring.resources import ProcessResources
from src.monitoring.stage_tracker import StageTracker
from src.monitoring.statistics import median, rank_percentile, safe_mean
from src.monitoring.timeutil import CUSTOM_RANGE, resolve_time_range
from src.store.base import WEBHOOK_SORT_FIELDS, DataStore

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_RECENT_SAMPLE = 100


def _coerce_webhook_status(value: Any) -> WebhookStatus:
    try:
        return WebhookStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid webhook status: {value!r}", field="status") from None


def _check_non_negative(value: Any, field_name: str) -> None:
    if not isinstance(value, (int, float)) or isinstance(value, bool) or value < 0:
        raise ValidationError(f"{field_name} must be a non-negative number", field=field_name)


class WebhookMonitor:
    """Monitoring facade over the store, stage tracker and metrics collector.

    Example:
        monitor = WebhookMonitor(store, broadcaster=sink)
        request = await monitor.record_webhook_request(WebhookRequest(source_ip="10.0.0.1"))
        page = await monitor.get_webhook_requests(WebhookFilters(time_range="last_hour"))
    """

    def __init__(
        self,
        store: DataStore,
        broadcaster: Optional[BroadcastSink] = None,
        config: Optional[MonitoringConfig] = None,
        stage_tracker: Optional[StageTracker] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        alert_manager: Optional[AlertManager] = None,
        resources: Optional[ProcessResources] = None,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster or BroadcastSink(enabled=False)
        self.config = config or DEFAULT_MONITORING_CONFIG
        self.stages = stage_tracker or StageTracker(store, self._broadcaster, self.config)
        self.metrics = metrics_collector
        self.alerts = alert_manager
        self._resources = resources or ProcessResources()
        self._started_at = time.monotonic()
        self._last_health_status: Optional[HealthStatus] = None
        self._pending: set[asyncio.Task] = set()

    # ── Webhook requests ─────────────────────────────────────────────

    def _validate_request(self, request: WebhookRequest) -> None:
        if not isinstance(request.source_ip, str) or not request.source_ip.strip():
            raise ValidationError("Source IP is required", field="source_ip")
        if not isinstance(request.headers, dict):
            raise ValidationError("Headers must be an object", field="headers")
        if not isinstance(request.payload, dict):
            raise ValidationError("Payload must be an object", field="payload")
        _check_non_negative(request.payload_size, "payload_size")
        _check_non_negative(request.processing_time, "processing_time")
        request.status = _coerce_webhook_status(request.status)

    async def record_webhook_request(self, request: WebhookRequest) -> WebhookRequest:
        """Persist one inbound request.

        Raises:
            ValidationError: malformed request fields.
            DatabaseError: the store failed.
        """
        self._validate_request(request)
        async with store_operation("record webhook request"):
            saved = await self._store.create_webhook_request(request)

        logger.info("Webhook %s recorded (%s, %.0fms)", saved.id, saved.status.value,
                    saved.processing_time)
        self._broadcaster.webhook_received(saved)
        await self._observe_webhook(saved)
        return saved

    async def update_webhook_request(self, request_id: str, update: WebhookRequestUpdate) -> WebhookRequest:
        """Fill in processing results for a recorded request.

        Raises:
            ValidationError: malformed update fields.
            NotFoundError: unknown request id.
        """
        if update.processing_time is not None:
            _check_non_negative(update.processing_time, "processing_time")
        status = _coerce_webhook_status(update.status) if update.status is not None else None

        async with store_operation("update webhook request"):
            request = await self._store.get_webhook_request(request_id)
            if request is None:
                raise NotFoundError("WebhookRequest", request_id)
            if update.signal_id is not None:
                request.signal_id = update.signal_id
            if update.processing_time is not None:
                request.processing_time = update.processing_time
            if status is not None:
                request.status = status
            if update.error_message is not None:
                request.error_message = update.error_message
            if update.error_stack is not None:
                request.error_stack = update.error_stack
            request = await self._store.update_webhook_request(request)

        logger.debug("Webhook %s updated (%s)", request_id, request.status.value)
        if status is not None:
            self._broadcaster.webhook_processed(request)
            await self._observe_webhook(request)
        return request

    async def _observe_webhook(self, request: WebhookRequest) -> None:
        try:
            if self.metrics is not None:
                self.metrics.record_webhook_metrics(
                    request.id, request.processing_time, request.status, request.payload_size,
                )
            if self.alerts is not None:
                await self.alerts.process_webhook(request)
        except Exception as exc:
            logger.error("Webhook observers failed for %s: %s", request.id, exc, exc_info=True)

    async def get_webhook_request(self, request_id: str) -> Optional[WebhookRequest]:
        async with store_operation("get webhook request"):
            return await self._store.get_webhook_request(request_id)

    async def get_webhook_requests(self, filters: Optional[WebhookFilters] = None) -> Page[WebhookRequest]:
        """Filtered, sorted, paginated webhook requests.

        Raises:
            ValidationError: page < 1, limit outside 1..1000, or unknown sort.
        """
        filters = self._resolve_filters(filters or WebhookFilters())
        async with store_operation("list webhook requests"):
            items, total = await self._store.query_webhook_requests(filters)
        return Page(items=items, total=total, page=filters.page, limit=filters.limit)

    def _resolve_filters(self, filters: WebhookFilters) -> WebhookFilters:
        if not isinstance(filters.page, int) or filters.page < 1:
            raise ValidationError("Page must be a positive integer", field="page")
        if not isinstance(filters.limit, int) or not 1 <= filters.limit <= MAX_PAGE_LIMIT:
            raise ValidationError(f"Limit must be between 1 and {MAX_PAGE_LIMIT}", field="limit")
        if filters.sort_by not in WEBHOOK_SORT_FIELDS:
            raise ValidationError(f"Cannot sort by {filters.sort_by}", field="sort_by")
        if filters.sort_order not in ("asc", "desc"):
            raise ValidationError("Sort order must be asc or desc", field="sort_order")

        resolved = dataclasses.replace(
            filters,
            statuses=[_coerce_webhook_status(s) for s in filters.statuses],
        )
        if filters.time_range and filters.time_range != CUSTOM_RANGE:
            since, _ = resolve_time_range(filters.time_range)
            resolved.date_from = since
        return resolved

    # ── Processing stages ────────────────────────────────────────────

    async def start_processing_stage(self, data: StageInput) -> ProcessingStage:
        return await self.stages.start_processing_stage(data)

    async def complete_processing_stage(
        self,
        stage_id: str,
        status: StageStatus,
        metadata: Optional[dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> ProcessingStage:
        stage = await self.stages.complete_processing_stage(stage_id, status, metadata, error_message)
        try:
            if self.metrics is not None:
                self.metrics.record_stage_metrics(stage.id, stage.stage, stage.duration or 0.0, stage.status)
        except Exception as exc:
            logger.error("Stage metrics failed for %s: %s", stage.id, exc, exc_info=True)
        if self.alerts is not None:
            self._schedule(self._observe_stage(stage), stage.id)
        return stage

    def _schedule(self, coro, label: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop, observers for %s dropped", label)
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _observe_stage(self, stage: ProcessingStage) -> None:
        try:
            await self.alerts.process_stage(stage)
        except Exception as exc:
            logger.error("Stage alert rules failed for %s: %s", stage.id, exc, exc_info=True)

    async def flush(self) -> None:
        """Wait for every in-flight stage observer to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def get_processing_stages(self, signal_id: str) -> list[ProcessingStage]:
        return await self.stages.get_processing_stages(signal_id)

    async def get_active_processing_stages(self) -> list[ProcessingStage]:
        return await self.stages.get_active_processing_stages()

    async def get_pipeline_status(self, signal_id: str) -> Optional[PipelineStatus]:
        return await self.stages.get_pipeline_status(signal_id)

    # ── Derived views ────────────────────────────────────────────────

    async def get_performance_metrics(
        self,
        time_range: str = "last_24_hours",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Throughput, latency percentiles, top errors and conversion rates."""
        if time_range == CUSTOM_RANGE and (start is None or end is None):
            raise ValidationError("Custom time range requires start and end", field="time_range")
        since, until = resolve_time_range(time_range, start, end)
        duration = int((until - since).total_seconds())

        async with store_operation("calculate performance metrics"):
            webhooks = await self._store.list_webhook_requests(since, until)
            active = await self._store.list_stages_by_status(StageStatus.IN_PROGRESS)
            signal_ids = {w.signal_id for w in webhooks if w.signal_id}
            trades_executed = 0
            for signal_id in signal_ids:
                trades_executed += len(await self._store.list_trades(signal_id=signal_id))

        total = len(webhooks)
        successful = sum(1 for w in webhooks if w.status == WebhookStatus.SUCCESS)
        failed = sum(1 for w in webhooks if w.status == WebhookStatus.FAILED)
        times = [w.processing_time for w in webhooks]
        signals_generated = sum(1 for w in webhooks if w.signal_id)
        minutes = max(1, -(-duration // 60))

        return {
            "period": {"start": since.isoformat(), "end": until.isoformat(), "duration": duration},
            "total_webhooks": total,
            "successful_webhooks": successful,
            "failed_webhooks": failed,
            "success_rate": successful / total * 100 if total else 0.0,
            "avg_processing_time": safe_mean(times),
            "p95_processing_time": rank_percentile(times, 0.95),
            "p99_processing_time": rank_percentile(times, 0.99),
            "max_processing_time": max(times, default=0.0),
            "webhooks_per_second": total / duration if duration > 0 else 0.0,
            "peak_webhooks_per_minute": -(-total // minutes),
            "avg_queue_depth": len(active),
            "top_errors": self._top_errors(webhooks),
            "signals_generated": signals_generated,
            "signal_conversion_rate": signals_generated / total * 100 if total else 0.0,
            "trades_executed": trades_executed,
            "trade_conversion_rate": (
                trades_executed / signals_generated * 100 if signals_generated else 0.0
            ),
        }

    @staticmethod
    def _top_errors(webhooks: list[WebhookRequest], limit: int = 10) -> list[dict[str, Any]]:
        errors = [
            w for w in webhooks
            if w.status in (WebhookStatus.FAILED, WebhookStatus.REJECTED) and w.error_message
        ]
        counts = Counter(w.error_message for w in errors)
        first_seen: dict[str, datetime] = {}
        last_seen: dict[str, datetime] = {}
        for w in errors:
            first_seen.setdefault(w.error_message, w.created_at)
            last_seen[w.error_message] = w.created_at
        return [
            {
                "message": message,
                "count": count,
                "percentage": count / len(errors) * 100,
                "first_seen": first_seen[message].isoformat(),
                "last_seen": last_seen[message].isoformat(),
            }
            for message, count in counts.most_common(limit)
        ]

    async def get_real_time_metrics(self) -> dict[str, Any]:
        """Counters over the last minute and the last 100 requests."""
        now = utcnow()
        async with store_operation("fetch real-time metrics"):
            last_hour = await self._store.list_webhook_requests(now - timedelta(hours=1))
            active = await self._store.list_stages_by_status(StageStatus.IN_PROGRESS)
            open_alerts = await self._store.list_alerts(active_only=True)
            latest = await self._store.latest_metrics()

        last_minute = [w for w in last_hour if w.created_at >= now - timedelta(minutes=1)]
        recent = last_hour[-_RECENT_SAMPLE:]
        recent_errors = sum(
            1 for w in recent if w.status in (WebhookStatus.FAILED, WebhookStatus.REJECTED)
        )
        unacknowledged = [a for a in open_alerts if not a.acknowledged]
        highest = min(
            (ALERT_SEVERITY_PRIORITY.index(a.severity) for a in unacknowledged), default=None,
        )

        return {
            "timestamp": now.isoformat(),
            "webhooks_last_minute": len(last_minute),
            "active_stages": len(active),
            "queue_depth": len(active),
            "recent_avg_processing_time": safe_mean([w.processing_time for w in recent]),
            "current_error_rate": recent_errors / len(recent) * 100 if recent else 0.0,
            "system_load": min(100, len(active) * 10 + len(last_minute) * 2),
            "unacknowledged_alerts": len(unacknowledged),
            "highest_alert_severity": (
                ALERT_SEVERITY_PRIORITY[highest].value if highest is not None else None
            ),
            "latest_snapshot": latest.to_dict() if latest else None,
        }

    async def get_processing_statistics(self, filters: Optional[WebhookFilters] = None) -> dict[str, Any]:
        """Status counts and processing-time distribution over filtered requests."""
        filters = self._resolve_filters(filters or WebhookFilters())
        async with store_operation("calculate processing statistics"):
            webhooks = await self._store.list_webhook_requests(
                filters.date_from or _EPOCH, filters.date_to,
            )
        webhooks = [w for w in webhooks if filters.matches(w)]

        total = len(webhooks)
        successful = sum(1 for w in webhooks if w.status == WebhookStatus.SUCCESS)
        times = [w.processing_time for w in webhooks]
        return {
            "total_webhooks": total,
            "successful_webhooks": successful,
            "failed_webhooks": sum(1 for w in webhooks if w.status == WebhookStatus.FAILED),
            "rejected_webhooks": sum(1 for w in webhooks if w.status == WebhookStatus.REJECTED),
            "success_rate": successful / total * 100 if total else 0.0,
            "avg_processing_time": safe_mean(times),
            "median_processing_time": median(times),
            "p95_processing_time": rank_percentile(times, 0.95),
            "p99_processing_time": rank_percentile(times, 0.99),
            "min_processing_time": min(times, default=0.0),
            "max_processing_time": max(times, default=0.0),
        }

    async def _check_database(self) -> dict[str, Any]:
        started = time.perf_counter()
        try:
            connected = bool(await self._store.ping())
        except Exception as exc:
            logger.error("Store health check failed: %s", exc)
            connected = False
        return {
            "status": "connected" if connected else "disconnected",
            "latency_ms": round((time.perf_counter() - started) * 1000, 2) if connected else 0.0,
        }

    async def _check_queue(self) -> dict[str, Any]:
        now = utcnow()
        active = await self._store.list_stages_by_status(StageStatus.IN_PROGRESS)
        recent = await self._store.list_stages_since(now - timedelta(hours=1))
        durations = [
            s.duration for s in recent
            if s.status == StageStatus.COMPLETED and s.duration is not None
        ][-_RECENT_SAMPLE:]
        capacity = self.config.queue_capacity
        oldest = max(((now - s.started_at).total_seconds() for s in active), default=0.0)
        return {
            "depth": len(active),
            "max_capacity": capacity,
            "utilization": len(active) / capacity * 100 if capacity else 0.0,
            "avg_processing_time": safe_mean(durations),
            "oldest_item_age": oldest,
        }

    async def get_system_health(self) -> dict[str, Any]:
        """Overall health with per-component checks.

        Unhealthy when the store is unreachable; degraded on high memory,
        queue utilization or error rate.
        """
        database = await self._check_database()
        memory_pct = self._resources.memory_percent()
        queue: dict[str, Any] = {}
        realtime: dict[str, Any] = {}

        if database["status"] == "disconnected":
            status = HealthStatus.UNHEALTHY
        else:
            try:
                queue = await self._check_queue()
                realtime = await self.get_real_time_metrics()
            except Exception as exc:
                logger.error("Health check could not read monitoring data: %s", exc)
                status = HealthStatus.UNHEALTHY
            else:
                degraded = (
                    memory_pct > self.config.degraded_memory_pct
                    or queue["utilization"] > self.config.degraded_queue_utilization_pct
                    or realtime["current_error_rate"] > self.config.degraded_error_rate_pct
                )
                status = HealthStatus.DEGRADED if degraded else HealthStatus.HEALTHY

        health = {
            "status": status.value,
            "uptime": round(time.monotonic() - self._started_at, 1),
            "last_check": utcnow().isoformat(),
            "database": database,
            "memory": {"percentage": round(memory_pct, 2)},
            "queue": queue,
            "requests_per_second": realtime.get("webhooks_last_minute", 0) / 60,
            "avg_response_time": realtime.get("recent_avg_processing_time", 0.0),
        }
        if status != self._last_health_status:
            if self._last_health_status is not None:
                logger.warning("System health changed: %s -> %s",
                               self._last_health_status.value, status.value)
            self._last_health_status = status
            self._broadcaster.health_changed(health)
        return health
