"""System metrics collection, history, trends and anomaly detection.

``collect_metrics`` produces one append-only ``SystemMetrics`` snapshot
from the store and the process; everything else here is a read-side
view over the stored snapshots.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Optional

from src.api_errors.exceptions import CollectionError, MonitoringServiceError, ValidationError
from src.monitoring.broadcaster import BroadcastSink
from src.monitoring.config import (
    DEFAULT_MONITORING_CONFIG,
    AnomalySeverity,
    MonitoringConfig,
    ProcessingStageType,
    StageStatus,
    WebhookStatus,
)
from src.monitoring.models import (
    Anomaly,
    AnomalyReport,
    MetricTrends,
    SystemMetrics,
    utcnow,
)
from src.monitoring.resources import ProcessResources
from src.monitoring.statistics import (
    population_mean_std,
    safe_mean,
    trend_direction,
    z_scores,
    z_severity,
)
from src.monitoring.timeutil import parse_interval, resolve_time_range
from src.signal_pipeline.models import DecisionType
from src.store.base import DataStore

logger = logging.getLogger(__name__)

# Snapshot fields scanned for anomalies
ANOMALY_METRICS = (
    "webhooks_per_minute",
    "avg_processing_time",
    "error_rate",
    "queue_depth",
    "memory_usage",
    "cpu_usage",
)

_SEVERITY_RANK = {AnomalySeverity.HIGH: 0, AnomalySeverity.MEDIUM: 1, AnomalySeverity.LOW: 2}

# Chart series: name -> (title, value extractor)
CHART_SERIES = {
    "webhook_volume": ("Webhook Volume", lambda m: m.webhooks_per_minute),
    "processing_time": ("Processing Time (ms)", lambda m: m.avg_processing_time),
    "error_rate": ("Error Rate (%)", lambda m: m.error_rate),
    "queue_depth": ("Queue Depth", lambda m: float(m.queue_depth)),
    "system_load": ("System Load (%)", lambda m: (m.cpu_usage + m.memory_usage) / 2),
}


class MetricsCollector:
    """Builds metric snapshots and serves the views derived from them.

    Example:
        collector = MetricsCollector(store, broadcaster)
        snapshot = await collector.collect_metrics()
        trends = await collector.calculate_trends("last_hour")
    """

    def __init__(
        self,
        store: DataStore,
        broadcaster: Optional[BroadcastSink] = None,
        config: Optional[MonitoringConfig] = None,
        resources: Optional[ProcessResources] = None,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster or BroadcastSink(enabled=False)
        self.config = config or DEFAULT_MONITORING_CONFIG
        self._resources = resources or ProcessResources()
        self._webhook_buffer: deque[dict[str, Any]] = deque(maxlen=self.config.metrics_buffer_size)
        self._stage_buffer: deque[dict[str, Any]] = deque(maxlen=self.config.metrics_buffer_size)

    # ── Collection ───────────────────────────────────────────────────

    async def collect_metrics(self) -> SystemMetrics:
        """Gather, persist and broadcast one snapshot.

        Raises:
            CollectionError: any source or the store failed.
        """
        now = utcnow()
        try:
            webhook, queue_depth, resources, business = await asyncio.gather(
                self._collect_webhook_metrics(now),
                self._collect_queue_depth(),
                self._collect_system_resources(now),
                self._collect_business_metrics(now),
            )
            snapshot = SystemMetrics(
                timestamp=now,
                queue_depth=queue_depth,
                **webhook,
                **resources,
                **business,
            )
            snapshot = await self._store.save_metrics(snapshot)
        except MonitoringServiceError as exc:
            if isinstance(exc, CollectionError):
                raise
            raise CollectionError(f"Failed to collect system metrics: {exc.message}") from exc
        except Exception as exc:
            logger.error("Metrics collection failed: %s", exc, exc_info=True)
            raise CollectionError(f"Failed to collect system metrics: {exc}") from exc

        self._cleanup_buffers(now)
        logger.debug(
            "Collected metrics: %.0f webhooks/min, queue depth %d",
            snapshot.webhooks_per_minute, snapshot.queue_depth,
        )
        self._broadcaster.metrics_updated(snapshot)
        return snapshot

    async def _collect_webhook_metrics(self, now: datetime) -> dict[str, float]:
        requests = await self._store.list_webhook_requests(since=now - timedelta(minutes=5))
        last_minute = [r for r in requests if r.created_at >= now - timedelta(minutes=1)]
        failed = sum(1 for r in requests if r.status == WebhookStatus.FAILED)
        return {
            "webhooks_per_minute": float(len(last_minute)),
            "avg_processing_time": safe_mean([r.processing_time for r in requests]),
            "error_rate": (failed / len(requests) * 100) if requests else 0.0,
        }

    async def _collect_queue_depth(self) -> int:
        return len(await self._store.list_stages_by_status(StageStatus.IN_PROGRESS))

    async def _collect_system_resources(self, now: datetime) -> dict[str, Any]:
        cpu = await self._resources.cpu_percent(self.config.cpu_sample_seconds)
        recent = await self._store.list_webhook_requests(since=now - timedelta(seconds=10))
        return {
            "memory_usage": self._resources.memory_percent(),
            "cpu_usage": cpu,
            "db_connections": max(1, min(len(recent), self.config.max_db_connections_estimate)),
        }

    async def _collect_business_metrics(self, now: datetime) -> dict[str, int]:
        since = now - timedelta(hours=1)
        signals, trades, approved, rejected = await asyncio.gather(
            self._store.count_signals(since),
            self._store.count_trades(since),
            self._store.count_decisions(since, DecisionType.TRADE),
            self._store.count_decisions(since, DecisionType.REJECT),
        )
        return {
            "signals_processed": signals,
            "trades_executed": trades,
            "decisions_approved": approved,
            "decisions_rejected": rejected,
        }

    # ── In-memory buffers ────────────────────────────────────────────

    def record_webhook_metrics(
        self, webhook_id: str, processing_time: float, status: WebhookStatus, payload_size: int,
    ) -> None:
        self._webhook_buffer.append({
            "webhook_id": webhook_id,
            "processing_time": processing_time,
            "status": WebhookStatus(status),
            "payload_size": payload_size,
            "timestamp": utcnow(),
        })

    def record_stage_metrics(
        self, stage_id: str, stage: ProcessingStageType, duration: float, status: StageStatus,
    ) -> None:
        self._stage_buffer.append({
            "stage_id": stage_id,
            "stage": ProcessingStageType(stage),
            "duration": duration,
            "status": StageStatus(status),
            "timestamp": utcnow(),
        })

    def recent_webhook_metrics(self) -> list[dict[str, Any]]:
        self._cleanup_buffers(utcnow())
        return list(self._webhook_buffer)

    def recent_stage_metrics(self) -> list[dict[str, Any]]:
        self._cleanup_buffers(utcnow())
        return list(self._stage_buffer)

    def _cleanup_buffers(self, now: datetime) -> None:
        cutoff = now - timedelta(seconds=self.config.metrics_retention_seconds)
        for buffer in (self._webhook_buffer, self._stage_buffer):
            while buffer and buffer[0]["timestamp"] < cutoff:
                buffer.popleft()

    # ── History ──────────────────────────────────────────────────────

    async def get_historical_metrics(
        self,
        time_range: str = "last_24_hours",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        interval: Optional[str] = None,
    ) -> list[SystemMetrics]:
        """Stored snapshots in the range, oldest first.

        With an interval ("5m", "1h") a snapshot is kept only once at
        least one interval has passed since the previously kept one.
        """
        since, until = resolve_time_range(time_range, start, end)
        try:
            snapshots = await self._store.list_metrics(since, until)
        except Exception as exc:
            logger.error("Failed to load historical metrics: %s", exc, exc_info=True)
            raise CollectionError(f"Failed to load historical metrics: {exc}") from exc

        step = parse_interval(interval) if interval else None
        if step is None:
            return snapshots

        sampled: list[SystemMetrics] = []
        for snapshot in snapshots:
            if not sampled or snapshot.timestamp - sampled[-1].timestamp >= step:
                sampled.append(snapshot)
        return sampled

    async def get_aggregated_metrics(
        self,
        time_range: str = "last_24_hours",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        interval: Optional[str] = None,
    ) -> dict[str, Any]:
        """Chart series plus averages, maxima and totals for a range."""
        snapshots = await self.get_historical_metrics(time_range, start, end, interval)
        series = {
            name: [
                {"timestamp": m.timestamp.isoformat(), "value": round(extract(m), 2)}
                for m in snapshots
            ]
            for name, (_, extract) in CHART_SERIES.items()
        }

        def _max(attr: str) -> float:
            return max((getattr(m, attr) for m in snapshots), default=0)

        def _avg(attr: str) -> float:
            return round(safe_mean([getattr(m, attr) for m in snapshots]), 2)

        return {
            "time_range": time_range,
            "data_points": len(snapshots),
            "series": series,
            "summary": {
                "avg_webhooks_per_minute": _avg("webhooks_per_minute"),
                "max_webhooks_per_minute": _max("webhooks_per_minute"),
                "avg_processing_time": _avg("avg_processing_time"),
                "max_processing_time": _max("avg_processing_time"),
                "avg_error_rate": _avg("error_rate"),
                "max_error_rate": _max("error_rate"),
                "max_queue_depth": _max("queue_depth"),
                "total_signals_processed": sum(m.signals_processed for m in snapshots),
                "total_trades_executed": sum(m.trades_executed for m in snapshots),
            },
        }

    async def get_chart_data(self, metric: str, time_range: str = "last_24_hours") -> dict[str, Any]:
        """One named series shaped for a dashboard chart."""
        if metric not in CHART_SERIES:
            raise ValidationError(f"Unknown chart metric: {metric}", field="metric")
        title, extract = CHART_SERIES[metric]
        snapshots = await self.get_historical_metrics(time_range)
        return {
            "metric": metric,
            "title": title,
            "time_range": time_range,
            "points": [
                {"timestamp": m.timestamp.isoformat(), "value": round(extract(m), 2)}
                for m in snapshots
            ],
            "last_updated": utcnow().isoformat(),
        }

    # ── Trends and anomalies ─────────────────────────────────────────

    async def calculate_trends(
        self,
        time_range: str = "last_24_hours",
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> MetricTrends:
        """Compare first-half and second-half averages of the range."""
        snapshots = await self.get_historical_metrics(time_range, start, end)
        if len(snapshots) < 2:
            return MetricTrends()

        half = len(snapshots) // 2
        first, second = snapshots[:half], snapshots[half:]

        def _trend(attr: str):
            return trend_direction(
                safe_mean([getattr(m, attr) for m in first]),
                safe_mean([getattr(m, attr) for m in second]),
                self.config.trend_threshold,
            )

        return MetricTrends(
            webhook_volume=_trend("webhooks_per_minute"),
            processing_time=_trend("avg_processing_time"),
            error_rate=_trend("error_rate"),
            queue_depth=_trend("queue_depth"),
        )

    async def detect_anomalies(self, lookback_hours: Optional[float] = None) -> AnomalyReport:
        """Flag snapshots whose population z-score exceeds the threshold."""
        hours = lookback_hours if lookback_hours is not None else self.config.default_lookback_hours
        now = utcnow()
        snapshots = await self.get_historical_metrics(
            "custom", start=now - timedelta(hours=hours), end=now,
        )
        if len(snapshots) < self.config.min_anomaly_points:
            return AnomalyReport()

        anomalies: list[Anomaly] = []
        for metric in ANOMALY_METRICS:
            values = [float(getattr(m, metric)) for m in snapshots]
            mean, std = population_mean_std(values)
            for snapshot, value, z in zip(snapshots, values, z_scores(values)):
                if abs(z) <= self.config.anomaly_z_threshold:
                    continue
                anomalies.append(Anomaly(
                    metric=metric,
                    timestamp=snapshot.timestamp,
                    value=value,
                    z_score=float(z),
                    severity=z_severity(z, self.config.anomaly_medium_z, self.config.anomaly_high_z),
                    expected_low=mean - 2 * std,
                    expected_high=mean + 2 * std,
                ))

        anomalies.sort(key=lambda a: a.timestamp, reverse=True)
        anomalies.sort(key=lambda a: _SEVERITY_RANK[a.severity])
        if anomalies:
            logger.info("Detected %d metric anomalies over %.1fh", len(anomalies), hours)
        return AnomalyReport(anomalies=anomalies)
