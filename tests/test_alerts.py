"""Tests for alert rules and the alert lifecycle."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.api_errors.exceptions import NotFoundError
from src.monitoring.alerts import AlertCandidate, AlertEvaluator, AlertManager
from src.monitoring.config import (
    AlertCategory,
    AlertPolicy,
    AlertSeverity,
    AlertThresholds,
    AlertType,
    ProcessingStageType,
    StageStatus,
    WebhookStatus,
)
from src.monitoring.models import (
    ProcessingStage,
    SystemAlert,
    SystemMetrics,
    WebhookRequest,
    utcnow,
)


def _types(candidates):
    return {c.type for c in candidates}


def _alert(category=AlertCategory.SYSTEM, severity=AlertSeverity.WARNING, minutes_ago=0, **kwargs):
    return SystemAlert(
        type="high_memory_usage", severity=severity, category=category,
        title="High memory usage", message="Memory at 90%",
        created_at=utcnow() - timedelta(minutes=minutes_ago), **kwargs,
    )


@pytest.fixture
def evaluator():
    return AlertEvaluator()


@pytest.fixture
def manager(store, sink):
    return AlertManager(store, broadcaster=sink, channels=[])


class TestMetricRules:
    """Threshold rules over metrics snapshots."""

    def test_quiet_snapshot_raises_nothing(self, evaluator):
        assert evaluator.evaluate_metrics(SystemMetrics(memory_usage=40.0, cpu_usage=20.0)) == []

    def test_processing_time_and_error_rate(self, evaluator):
        candidates = evaluator.evaluate_metrics(SystemMetrics(avg_processing_time=6000.0, error_rate=12.0))
        assert _types(candidates) == {AlertType.HIGH_PROCESSING_TIME, AlertType.HIGH_ERROR_RATE}
        by_type = {c.type: c for c in candidates}
        assert by_type[AlertType.HIGH_ERROR_RATE].severity == AlertSeverity.ERROR
        assert by_type[AlertType.HIGH_PROCESSING_TIME].category == AlertCategory.PERFORMANCE

    def test_memory_and_cpu_together_is_overload(self, evaluator):
        candidates = evaluator.evaluate_metrics(SystemMetrics(memory_usage=90.0, cpu_usage=95.0))
        assert _types(candidates) == {AlertType.SYSTEM_OVERLOAD}
        assert candidates[0].severity == AlertSeverity.CRITICAL

    def test_memory_alone(self, evaluator):
        candidates = evaluator.evaluate_metrics(SystemMetrics(memory_usage=90.0, cpu_usage=10.0))
        assert _types(candidates) == {AlertType.HIGH_MEMORY_USAGE}

    def test_queue_and_connections(self, evaluator):
        candidates = evaluator.evaluate_metrics(SystemMetrics(queue_depth=151, db_connections=81))
        assert _types(candidates) == {AlertType.HIGH_QUEUE_DEPTH, AlertType.HIGH_DB_CONNECTIONS}

    def test_values_at_threshold_do_not_fire(self, evaluator):
        snapshot = SystemMetrics(avg_processing_time=5000.0, error_rate=10.0, queue_depth=150)
        assert evaluator.evaluate_metrics(snapshot) == []

    def test_custom_thresholds_and_overrides(self):
        evaluator = AlertEvaluator(
            AlertThresholds(error_rate_pct=1.0),
            AlertPolicy(severity_overrides={AlertType.HIGH_ERROR_RATE: AlertSeverity.CRITICAL}),
        )
        candidates = evaluator.evaluate_metrics(SystemMetrics(error_rate=2.0))
        assert candidates[0].severity == AlertSeverity.CRITICAL


class TestWebhookAndStageRules:
    """Rules over individual requests and stages."""

    def test_large_payload_is_security(self, evaluator):
        request = WebhookRequest(source_ip="10.0.0.9", payload_size=11 * 1024 * 1024)
        candidates = evaluator.evaluate_webhook(request)
        assert candidates[0].type == AlertType.LARGE_PAYLOAD
        assert candidates[0].category == AlertCategory.SECURITY
        assert candidates[0].details["source_ip"] == "10.0.0.9"

    def test_consecutive_failures(self, evaluator):
        request = WebhookRequest(source_ip="10.0.0.9", status=WebhookStatus.FAILED)
        assert evaluator.evaluate_webhook(request, consecutive_failures=4) == []
        assert _types(evaluator.evaluate_webhook(request, consecutive_failures=5)) == {
            AlertType.CONSECUTIVE_FAILURES,
        }

    def test_failed_monitored_stage(self, evaluator):
        stage = ProcessingStage(signal_id="sig_1", stage=ProcessingStageType.EXECUTING,
                                status=StageStatus.FAILED, error_message="broker down", duration=20000.0)
        assert _types(evaluator.evaluate_stage(stage)) == {AlertType.STAGE_FAILURE, AlertType.STAGE_TIMEOUT}

    def test_unmonitored_or_open_stage_ignored(self, evaluator):
        received = ProcessingStage(signal_id="sig_1", stage=ProcessingStageType.RECEIVED,
                                   status=StageStatus.FAILED)
        running = ProcessingStage(signal_id="sig_1", stage=ProcessingStageType.ENRICHING)
        assert evaluator.evaluate_stage(received) == []
        assert evaluator.evaluate_stage(running) == []

    def test_stage_failure_rate(self, evaluator):
        stages = [
            ProcessingStage(signal_id=f"sig_{i}", stage=ProcessingStageType.DECIDING,
                            status=StageStatus.FAILED if i < 2 else StageStatus.COMPLETED)
            for i in range(10)
        ]
        candidates = evaluator.evaluate_stage_failure_rate(stages)
        assert candidates[0].details["value"] == pytest.approx(20.0)
        assert evaluator.evaluate_stage_failure_rate(stages[1:]) == []


class TestRaiseAlerts:
    """Persistence and per-category suppression."""

    @pytest.mark.asyncio
    async def test_raise_persists_and_broadcasts(self, manager, store, sink, publisher):
        raised = await manager.process_metrics(SystemMetrics(error_rate=50.0))
        await sink.flush()

        assert len(raised) == 1
        assert await store.get_alert(raised[0].id) is not None
        assert publisher.history[-1].event == "alert.created"

    @pytest.mark.asyncio
    async def test_same_category_suppressed_within_window(self, manager):
        first = await manager.process_metrics(SystemMetrics(memory_usage=90.0))
        second = await manager.process_metrics(SystemMetrics(memory_usage=95.0))
        assert len(first) == 1
        assert second == []

    @pytest.mark.asyncio
    async def test_suppression_applies_within_one_batch(self, manager):
        raised = await manager.process_metrics(SystemMetrics(queue_depth=200, memory_usage=90.0,
                                                             db_connections=90))
        categories = [a.category for a in raised]
        assert categories.count(AlertCategory.SYSTEM) == 1
        assert AlertCategory.PROCESSING in categories

    @pytest.mark.asyncio
    async def test_old_alert_does_not_suppress(self, manager, store):
        await store.save_alert(_alert(minutes_ago=20))
        raised = await manager.process_metrics(SystemMetrics(memory_usage=90.0))
        assert len(raised) == 1

    @pytest.mark.asyncio
    async def test_failure_streak_resets_on_success(self, manager):
        for _ in range(4):
            await manager.process_webhook(WebhookRequest(source_ip="1.1.1.1", status=WebhookStatus.FAILED))
        assert manager.consecutive_failures == 4
        await manager.process_webhook(WebhookRequest(source_ip="1.1.1.1"))
        assert manager.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_fifth_failure_raises(self, manager):
        raised = []
        for _ in range(5):
            raised = await manager.process_webhook(
                WebhookRequest(source_ip="1.1.1.1", status=WebhookStatus.FAILED, error_message="bad")
            )
        assert raised[0].type == AlertType.CONSECUTIVE_FAILURES.value

    @pytest.mark.asyncio
    async def test_empty_candidates(self, manager):
        assert await manager.raise_alerts([]) == []


class TestAlertLifecycle:
    """Acknowledge, resolve, auto-resolve and escalation."""

    @pytest.mark.asyncio
    async def test_acknowledge_is_one_way(self, manager, store):
        alert = await store.save_alert(_alert())
        first = await manager.acknowledge(alert.id, by="oncall")
        second = await manager.acknowledge(alert.id, by="someone-else")

        assert first.acknowledged
        assert second.acknowledged_by == "oncall"
        assert second.acknowledged_at == first.acknowledged_at

    @pytest.mark.asyncio
    async def test_resolve_is_idempotent(self, manager, store, sink, publisher):
        alert = await store.save_alert(_alert())
        resolved = await manager.resolve(alert.id)
        again = await manager.resolve(alert.id)
        await sink.flush()

        assert resolved.resolved and again.resolved_at == resolved.resolved_at
        assert [m.event for m in publisher.history].count("alert.resolved") == 1

    @pytest.mark.asyncio
    async def test_unknown_alert(self, manager):
        with pytest.raises(NotFoundError):
            await manager.acknowledge("alert_missing")
        with pytest.raises(NotFoundError):
            await manager.resolve("alert_missing")

    @pytest.mark.asyncio
    async def test_list_active_orders_by_severity(self, manager, store):
        await store.save_alert(_alert(severity=AlertSeverity.WARNING))
        await store.save_alert(_alert(severity=AlertSeverity.CRITICAL, minutes_ago=5))
        resolved = await store.save_alert(_alert(severity=AlertSeverity.ERROR))
        await manager.resolve(resolved.id)

        active = await manager.list_active()
        assert [a.severity for a in active] == [AlertSeverity.CRITICAL, AlertSeverity.WARNING]

    @pytest.mark.asyncio
    async def test_auto_resolve_old_alerts(self, manager, store):
        old = await store.save_alert(_alert(minutes_ago=90))
        fresh = await store.save_alert(_alert(minutes_ago=5))

        resolved = await manager.auto_resolve()

        assert [a.id for a in resolved] == [old.id]
        assert not (await store.get_alert(fresh.id)).resolved

    @pytest.mark.asyncio
    async def test_escalation_notifies_once(self, store, sink):
        channel = AsyncMock()
        channel.name = "pager"
        manager = AlertManager(store, broadcaster=sink, channels=[channel])
        stale = await store.save_alert(_alert(minutes_ago=45))
        await store.save_alert(_alert(minutes_ago=45, acknowledged=True))
        await store.save_alert(_alert(minutes_ago=5))

        escalated = await manager.check_escalations()
        again = await manager.check_escalations()

        assert [a.id for a in escalated] == [stale.id]
        assert again == []
        channel.notify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_block_others(self, store, sink):
        broken = AsyncMock()
        broken.name = "broken"
        broken.notify.side_effect = RuntimeError("smtp down")
        working = AsyncMock()
        working.name = "working"
        manager = AlertManager(store, broadcaster=sink, channels=[broken, working])
        await store.save_alert(_alert(minutes_ago=45))

        escalated = await manager.check_escalations()

        assert len(escalated) == 1
        working.notify.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_maintenance_escalates_before_resolving(self, store, sink):
        channel = AsyncMock()
        channel.name = "pager"
        manager = AlertManager(store, broadcaster=sink, channels=[channel])
        alert = await store.save_alert(_alert(minutes_ago=90))

        await manager.run_maintenance()

        stored = await store.get_alert(alert.id)
        assert stored.escalated
        assert stored.resolved
        channel.notify.assert_awaited_once()


def test_candidate_to_alert():
    candidate = AlertCandidate(
        type=AlertType.HIGH_CPU_USAGE, severity=AlertSeverity.WARNING,
        category=AlertCategory.SYSTEM, title="High CPU", message="CPU at 90%",
        details={"value": 90.0},
    )
    alert = candidate.to_alert()
    assert alert.type == "high_cpu_usage"
    assert alert.details == {"value": 90.0}
    assert alert.is_active
