"""Alert rules and alert lifecycle.

``AlertEvaluator`` is stateless: it compares one snapshot, webhook
request or stage against ``AlertThresholds`` and returns candidates.
``AlertManager`` turns candidates into persisted alerts (with per
category suppression), and handles acknowledge, resolve, auto-resolve
and escalation.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Protocol, runtime_checkable

from src.api_errors.exceptions import NotFoundError
from src.monitoring.broadcaster import BroadcastSink
from src.monitoring.config import (
    ALERT_SEVERITY_PRIORITY,
    AlertCategory,
    AlertPolicy,
    AlertSeverity,
    AlertThresholds,
    AlertType,
    EventName,
    StageStatus,
    WebhookStatus,
)
from src.monitoring.guards import store_operation
from src.monitoring.models import (
    ProcessingStage,
    SystemAlert,
    SystemMetrics,
    WebhookRequest,
    utcnow,
)
from src.store.base import DataStore

logger = logging.getLogger(__name__)

_DEFAULT_SEVERITY: dict[AlertType, AlertSeverity] = {
    AlertType.HIGH_PROCESSING_TIME: AlertSeverity.WARNING,
    AlertType.HIGH_ERROR_RATE: AlertSeverity.ERROR,
    AlertType.CONSECUTIVE_FAILURES: AlertSeverity.ERROR,
    AlertType.LARGE_PAYLOAD: AlertSeverity.WARNING,
    AlertType.HIGH_MEMORY_USAGE: AlertSeverity.WARNING,
    AlertType.HIGH_CPU_USAGE: AlertSeverity.WARNING,
    AlertType.HIGH_QUEUE_DEPTH: AlertSeverity.WARNING,
    AlertType.HIGH_DB_CONNECTIONS: AlertSeverity.WARNING,
    AlertType.STAGE_TIMEOUT: AlertSeverity.WARNING,
    AlertType.STAGE_FAILURE: AlertSeverity.ERROR,
    AlertType.SYSTEM_OVERLOAD: AlertSeverity.CRITICAL,
}


@dataclass
class AlertCandidate:
    """A rule that fired, before suppression decides whether to raise it."""
    type: AlertType
    severity: AlertSeverity
    category: AlertCategory
    title: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_alert(self, created_at: Optional[datetime] = None) -> SystemAlert:
        return SystemAlert(
            type=self.type.value,
            severity=self.severity,
            category=self.category,
            title=self.title,
            message=self.message,
            details=dict(self.details),
            created_at=created_at or utcnow(),
        )


class AlertEvaluator:
    """Threshold rules over metrics, webhook requests and stages."""

    def __init__(
        self,
        thresholds: Optional[AlertThresholds] = None,
        policy: Optional[AlertPolicy] = None,
    ) -> None:
        self.thresholds = thresholds or AlertThresholds()
        self.policy = policy or AlertPolicy()

    def _severity(self, alert_type: AlertType) -> AlertSeverity:
        return self.policy.severity_overrides.get(alert_type, _DEFAULT_SEVERITY[alert_type])

    def _candidate(
        self, alert_type: AlertType, category: AlertCategory, title: str, message: str,
        **details: Any,
    ) -> AlertCandidate:
        return AlertCandidate(
            type=alert_type,
            severity=self._severity(alert_type),
            category=category,
            title=title,
            message=message,
            details=details,
        )

    def evaluate_metrics(self, snapshot: SystemMetrics) -> list[AlertCandidate]:
        """Rules over one metrics snapshot."""
        t = self.thresholds
        candidates = []

        if snapshot.avg_processing_time > t.processing_time_ms:
            candidates.append(self._candidate(
                AlertType.HIGH_PROCESSING_TIME, AlertCategory.PERFORMANCE,
                "High webhook processing time",
                f"Average processing time {snapshot.avg_processing_time:.0f}ms "
                f"exceeds {t.processing_time_ms:.0f}ms",
                value=snapshot.avg_processing_time, threshold=t.processing_time_ms,
            ))
        if snapshot.error_rate > t.error_rate_pct:
            candidates.append(self._candidate(
                AlertType.HIGH_ERROR_RATE, AlertCategory.WEBHOOK,
                "High webhook error rate",
                f"Error rate {snapshot.error_rate:.1f}% exceeds {t.error_rate_pct:.1f}%",
                value=snapshot.error_rate, threshold=t.error_rate_pct,
            ))
        if snapshot.queue_depth > t.queue_depth:
            candidates.append(self._candidate(
                AlertType.HIGH_QUEUE_DEPTH, AlertCategory.PROCESSING,
                "High queue depth",
                f"{snapshot.queue_depth} stages in progress (threshold {t.queue_depth})",
                value=snapshot.queue_depth, threshold=t.queue_depth,
            ))

        memory_high = snapshot.memory_usage > t.memory_usage_pct
        cpu_high = snapshot.cpu_usage > t.cpu_usage_pct
        if memory_high and cpu_high:
            candidates.append(self._candidate(
                AlertType.SYSTEM_OVERLOAD, AlertCategory.SYSTEM,
                "System overload",
                f"Memory {snapshot.memory_usage:.1f}% and CPU {snapshot.cpu_usage:.1f}% "
                "both above thresholds",
                memory_usage=snapshot.memory_usage, cpu_usage=snapshot.cpu_usage,
            ))
        else:
            if memory_high:
                candidates.append(self._candidate(
                    AlertType.HIGH_MEMORY_USAGE, AlertCategory.SYSTEM,
                    "High memory usage",
                    f"Memory usage {snapshot.memory_usage:.1f}% exceeds {t.memory_usage_pct:.0f}%",
                    value=snapshot.memory_usage, threshold=t.memory_usage_pct,
                ))
            if cpu_high:
                candidates.append(self._candidate(
                    AlertType.HIGH_CPU_USAGE, AlertCategory.SYSTEM,
                    "High CPU usage",
                    f"CPU usage {snapshot.cpu_usage:.1f}% exceeds {t.cpu_usage_pct:.0f}%",
                    value=snapshot.cpu_usage, threshold=t.cpu_usage_pct,
                ))
        if snapshot.db_connections > t.db_connections:
            candidates.append(self._candidate(
                AlertType.HIGH_DB_CONNECTIONS, AlertCategory.SYSTEM,
                "High database connection count",
                f"{snapshot.db_connections} connections (threshold {t.db_connections})",
                value=snapshot.db_connections, threshold=t.db_connections,
            ))
        return candidates

    def evaluate_webhook(self, request: WebhookRequest, consecutive_failures: int = 0) -> list[AlertCandidate]:
        """Rules over one webhook request and the current failure streak."""
        t = self.thresholds
        candidates = []

        if request.processing_time > t.processing_time_ms:
            candidates.append(self._candidate(
                AlertType.HIGH_PROCESSING_TIME, AlertCategory.WEBHOOK,
                "Slow webhook request",
                f"Webhook {request.id} took {request.processing_time:.0f}ms",
                webhook_id=request.id, value=request.processing_time,
                threshold=t.processing_time_ms,
            ))
        if request.payload_size > t.payload_size_bytes:
            candidates.append(self._candidate(
                AlertType.LARGE_PAYLOAD, AlertCategory.SECURITY,
                "Large webhook payload",
                f"Webhook {request.id} from {request.source_ip} sent {request.payload_size} bytes",
                webhook_id=request.id, source_ip=request.source_ip,
                value=request.payload_size, threshold=t.payload_size_bytes,
            ))
        if consecutive_failures >= t.consecutive_failures:
            candidates.append(self._candidate(
                AlertType.CONSECUTIVE_FAILURES, AlertCategory.WEBHOOK,
                "Consecutive webhook failures",
                f"{consecutive_failures} webhook requests failed in a row",
                webhook_id=request.id, value=consecutive_failures,
                threshold=t.consecutive_failures, last_error=request.error_message,
            ))
        return candidates

    def evaluate_stage(self, stage: ProcessingStage) -> list[AlertCandidate]:
        """Rules over one closed stage of a monitored type."""
        t = self.thresholds
        if stage.stage not in t.monitored_stages or stage.is_open:
            return []
        candidates = []

        if stage.duration is not None and stage.duration > t.stage_timeout_ms:
            candidates.append(self._candidate(
                AlertType.STAGE_TIMEOUT, AlertCategory.PROCESSING,
                f"Slow {stage.stage.value} stage",
                f"Stage {stage.stage.value} for signal {stage.signal_id} took {stage.duration:.0f}ms",
                stage_id=stage.id, signal_id=stage.signal_id, stage=stage.stage.value,
                value=stage.duration, threshold=t.stage_timeout_ms,
            ))
        if stage.status == StageStatus.FAILED:
            candidates.append(self._candidate(
                AlertType.STAGE_FAILURE, AlertCategory.PROCESSING,
                f"{stage.stage.value.capitalize()} stage failed",
                f"Stage {stage.stage.value} failed for signal {stage.signal_id}: "
                f"{stage.error_message or 'unknown error'}",
                stage_id=stage.id, signal_id=stage.signal_id, stage=stage.stage.value,
            ))
        return candidates

    def evaluate_stage_failure_rate(self, stages: list[ProcessingStage]) -> list[AlertCandidate]:
        """Failure rate over closed stages of monitored types."""
        closed = [s for s in stages if s.stage in self.thresholds.monitored_stages and not s.is_open]
        if not closed:
            return []
        failed = sum(1 for s in closed if s.status == StageStatus.FAILED)
        rate = failed / len(closed) * 100
        if rate <= self.thresholds.stage_failure_rate_pct:
            return []
        return [self._candidate(
            AlertType.STAGE_FAILURE, AlertCategory.PROCESSING,
            "High stage failure rate",
            f"{failed} of {len(closed)} stages failed ({rate:.1f}%)",
            value=rate, threshold=self.thresholds.stage_failure_rate_pct,
        )]


# =====================================================================
# Notification
# =====================================================================


@runtime_checkable
class NotificationChannel(Protocol):
    """Destination for escalated alerts."""

    name: str

    async def notify(self, alert: SystemAlert) -> None: ...


class LoggingNotificationChannel:
    """Writes escalations to the log. Default when nothing else is configured."""

    name = "log"

    def __init__(self, logger_name: str = "signal_desk.alerts.escalations") -> None:
        self._logger = logging.getLogger(logger_name)

    async def notify(self, alert: SystemAlert) -> None:
        self._logger.warning(
            "ESCALATED [%s/%s] %s: %s", alert.severity.value, alert.category.value,
            alert.title, alert.message,
        )


# =====================================================================
# Lifecycle
# =====================================================================


def _priority(alert: SystemAlert) -> int:
    return ALERT_SEVERITY_PRIORITY.index(alert.severity)


class AlertManager:
    """Raises, suppresses, acknowledges, resolves and escalates alerts.

    Example:
        manager = AlertManager(store, broadcaster=sink)
        raised = await manager.process_metrics(snapshot)
        await manager.acknowledge(raised[0].id, by="oncall")
    """

    def __init__(
        self,
        store: DataStore,
        evaluator: Optional[AlertEvaluator] = None,
        broadcaster: Optional[BroadcastSink] = None,
        policy: Optional[AlertPolicy] = None,
        channels: Optional[list[NotificationChannel]] = None,
    ) -> None:
        self._store = store
        self.policy = policy or AlertPolicy()
        self.evaluator = evaluator or AlertEvaluator(policy=self.policy)
        self._broadcaster = broadcaster or BroadcastSink(enabled=False)
        self.channels: list[NotificationChannel] = (
            channels if channels is not None else [LoggingNotificationChannel()]
        )
        self._consecutive_failures = 0

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def raise_alerts(
        self, candidates: list[AlertCandidate], now: Optional[datetime] = None,
    ) -> list[SystemAlert]:
        """Persist candidates whose category has no alert inside the suppression window.

        Returns:
            The alerts actually raised, in candidate order.
        """
        if not candidates:
            return []
        now = now or utcnow()
        window_start = now - timedelta(minutes=self.policy.suppression_window_minutes)

        raised = []
        async with store_operation("raise alerts"):
            recent = await self._store.list_alerts(since=window_start)
            suppressed_categories = {a.category for a in recent}
            for candidate in candidates:
                if candidate.category in suppressed_categories:
                    logger.debug("Suppressed %s alert (%s)", candidate.type.value,
                                 candidate.category.value)
                    continue
                alert = await self._store.save_alert(candidate.to_alert(now))
                suppressed_categories.add(alert.category)
                raised.append(alert)

        for alert in raised:
            logger.warning("Alert raised: [%s/%s] %s", alert.severity.value,
                           alert.category.value, alert.title)
            self._broadcaster.alert_event(alert, EventName.ALERT_CREATED)
        return raised

    async def process_metrics(self, snapshot: SystemMetrics) -> list[SystemAlert]:
        return await self.raise_alerts(self.evaluator.evaluate_metrics(snapshot))

    async def process_webhook(self, request: WebhookRequest) -> list[SystemAlert]:
        """Track the failure streak and evaluate webhook rules."""
        if request.status == WebhookStatus.FAILED:
            self._consecutive_failures += 1
        else:
            self._consecutive_failures = 0
        return await self.raise_alerts(
            self.evaluator.evaluate_webhook(request, self._consecutive_failures)
        )

    async def process_stage(self, stage: ProcessingStage) -> list[SystemAlert]:
        return await self.raise_alerts(self.evaluator.evaluate_stage(stage))

    async def process_stage_window(self, now: Optional[datetime] = None) -> list[SystemAlert]:
        """Failure rate over stages started in the trailing window."""
        now = now or utcnow()
        since = now - timedelta(minutes=self.policy.stage_failure_window_minutes)
        async with store_operation("list stages for failure rate"):
            stages = await self._store.list_stages_since(since)
        return await self.raise_alerts(self.evaluator.evaluate_stage_failure_rate(stages), now)

    async def acknowledge(self, alert_id: str, by: str = "system") -> SystemAlert:
        """Acknowledge an alert. Acknowledging twice keeps the first acknowledgement.

        Raises:
            NotFoundError: unknown alert id.
        """
        async with store_operation("acknowledge alert"):
            alert = await self._store.get_alert(alert_id)
            if alert is None:
                raise NotFoundError("SystemAlert", alert_id)
            if alert.acknowledged:
                return alert
            alert.acknowledged = True
            alert.acknowledged_at = utcnow()
            alert.acknowledged_by = by
            alert = await self._store.update_alert(alert)

        logger.info("Alert %s acknowledged by %s", alert_id, by)
        self._broadcaster.alert_event(alert, EventName.ALERT_ACKNOWLEDGED)
        return alert

    async def resolve(self, alert_id: str) -> SystemAlert:
        """Resolve an alert. Resolving twice is a no-op.

        Raises:
            NotFoundError: unknown alert id.
        """
        async with store_operation("resolve alert"):
            alert = await self._store.get_alert(alert_id)
            if alert is None:
                raise NotFoundError("SystemAlert", alert_id)
            if alert.resolved:
                return alert
            alert.resolved = True
            alert.resolved_at = utcnow()
            alert = await self._store.update_alert(alert)

        logger.info("Alert %s resolved", alert_id)
        self._broadcaster.alert_event(alert, EventName.ALERT_RESOLVED)
        return alert

    async def list_active(self, category: Optional[AlertCategory] = None) -> list[SystemAlert]:
        """Unresolved alerts, most severe first, then newest first."""
        async with store_operation("list active alerts"):
            alerts = await self._store.list_alerts(
                category=category.value if category else None, active_only=True,
            )
        alerts.sort(key=lambda a: a.created_at, reverse=True)
        alerts.sort(key=_priority)
        return alerts

    async def list_alerts(
        self,
        since: Optional[datetime] = None,
        category: Optional[AlertCategory] = None,
        active_only: bool = False,
    ) -> list[SystemAlert]:
        async with store_operation("list alerts"):
            return await self._store.list_alerts(
                since=since, category=category.value if category else None,
                active_only=active_only,
            )

    async def auto_resolve(self, now: Optional[datetime] = None) -> list[SystemAlert]:
        """Resolve active alerts older than the auto-resolve window."""
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.policy.auto_resolve_after_minutes)
        resolved = []
        for alert in await self.list_active():
            if alert.created_at <= cutoff:
                resolved.append(await self.resolve(alert.id))
        if resolved:
            logger.info("Auto-resolved %d alerts", len(resolved))
        return resolved

    async def check_escalations(self, now: Optional[datetime] = None) -> list[SystemAlert]:
        """Notify every channel once about each stale unacknowledged alert.

        A channel failure is logged and does not stop the other channels.
        """
        now = now or utcnow()
        cutoff = now - timedelta(minutes=self.policy.escalate_after_minutes)
        escalated = []
        for alert in await self.list_active():
            if alert.acknowledged or alert.escalated or alert.created_at > cutoff:
                continue
            for channel in self.channels:
                try:
                    await channel.notify(alert)
                except Exception as exc:
                    logger.error("Escalation of %s via %s failed: %s", alert.id,
                                 getattr(channel, "name", channel), exc)
            alert.escalated = True
            async with store_operation("mark alert escalated"):
                escalated.append(await self._store.update_alert(alert))
        if escalated:
            logger.warning("Escalated %d unacknowledged alerts", len(escalated))
        return escalated

    async def run_maintenance(self, now: Optional[datetime] = None) -> None:
        """Escalation check followed by auto-resolve."""
        await self.check_escalations(now)
        await self.auto_resolve(now)
