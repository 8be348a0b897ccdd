"""Tests for the webhook monitoring facade."""

import asyncio
import logging
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.api_errors.exceptions import DatabaseError, NotFoundError, ValidationError
from src.monitoring.config import ProcessingStageType, StageStatus, WebhookStatus
from src.monitoring.models import (
    StageInput,
    WebhookFilters,
    WebhookRequest,
    WebhookRequestUpdate,
    utcnow,
)
from src.monitoring.webhook_monitor import WebhookMonitor


@pytest.fixture
def monitor(store, sink, resources):
    return WebhookMonitor(store, broadcaster=sink, resources=resources)


async def _record(monitor, **fields):
    data = {"source_ip": "10.0.0.1"}
    data.update(fields)
    return await monitor.record_webhook_request(WebhookRequest(**data))


class TestRecordWebhookRequest:
    """Persisting inbound requests."""

    @pytest.mark.asyncio
    async def test_record_persists_and_broadcasts(self, monitor, store, sink, publisher):
        saved = await _record(monitor, payload={"ticker": "spy"}, payload_size=120, processing_time=42.0)
        await sink.flush()

        stored = await store.get_webhook_request(saved.id)
        assert stored.payload == {"ticker": "spy"}
        assert stored.ticker == "SPY"
        assert publisher.history[-1].event == "webhook.received"
        assert publisher.history[-1].payload["webhook_id"] == saved.id

    @pytest.mark.asyncio
    async def test_blank_source_ip_rejected(self, monitor):
        with pytest.raises(ValidationError) as exc_info:
            await _record(monitor, source_ip="")
        assert exc_info.value.field == "source_ip"

    @pytest.mark.asyncio
    async def test_negative_processing_time_rejected(self, monitor):
        with pytest.raises(ValidationError) as exc_info:
            await _record(monitor, processing_time=-1)
        assert exc_info.value.field == "processing_time"

    @pytest.mark.asyncio
    async def test_status_string_is_coerced(self, monitor):
        saved = await _record(monitor, status="failed")
        assert saved.status == WebhookStatus.FAILED

    @pytest.mark.asyncio
    async def test_unknown_status_rejected(self, monitor):
        with pytest.raises(ValidationError):
            await _record(monitor, status="exploded")

    @pytest.mark.asyncio
    async def test_observers_receive_the_request(self, store, sink, resources):
        metrics = MagicMock()
        alerts = MagicMock()
        alerts.process_webhook = AsyncMock()
        monitor = WebhookMonitor(store, broadcaster=sink, metrics_collector=metrics,
                                 alert_manager=alerts, resources=resources)

        saved = await _record(monitor, processing_time=12.5, payload_size=64)

        metrics.record_webhook_metrics.assert_called_once_with(
            saved.id, 12.5, WebhookStatus.SUCCESS, 64,
        )
        alerts.process_webhook.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_observer_failure_does_not_fail_the_write(self, store, sink, resources):
        metrics = MagicMock()
        metrics.record_webhook_metrics.side_effect = RuntimeError("buffer broken")
        monitor = WebhookMonitor(store, broadcaster=sink, metrics_collector=metrics, resources=resources)

        saved = await _record(monitor)
        assert await store.get_webhook_request(saved.id) is not None

    @pytest.mark.asyncio
    async def test_store_failure_becomes_database_error(self, store, sink, resources):
        store.create_webhook_request = AsyncMock(side_effect=RuntimeError("connection reset"))
        monitor = WebhookMonitor(store, broadcaster=sink, resources=resources)

        with pytest.raises(DatabaseError) as exc_info:
            await _record(monitor)
        assert exc_info.value.transient is True


class TestUpdateWebhookRequest:
    """Filling in processing results."""

    @pytest.mark.asyncio
    async def test_update_sets_fields_and_broadcasts_failure(self, monitor, sink, publisher):
        saved = await _record(monitor)
        updated = await monitor.update_webhook_request(saved.id, WebhookRequestUpdate(
            status=WebhookStatus.FAILED, error_message="bad signature", processing_time=80.0,
        ))
        await sink.flush()

        assert updated.status == WebhookStatus.FAILED
        assert updated.error_message == "bad signature"
        assert updated.processing_time == 80.0
        assert publisher.history[-1].event == "webhook.failed"

    @pytest.mark.asyncio
    async def test_update_without_status_does_not_broadcast(self, monitor, sink, publisher):
        saved = await _record(monitor)
        await sink.flush()
        before = len(publisher.history)

        updated = await monitor.update_webhook_request(saved.id, WebhookRequestUpdate(signal_id="sig_9"))
        await sink.flush()

        assert updated.signal_id == "sig_9"
        assert len(publisher.history) == before

    @pytest.mark.asyncio
    async def test_update_unknown_request(self, monitor):
        with pytest.raises(NotFoundError):
            await monitor.update_webhook_request("wh_missing", WebhookRequestUpdate(signal_id="x"))


class TestWebhookQueries:
    """Filtering and pagination."""

    @pytest.mark.asyncio
    async def test_pagination(self, monitor):
        for i in range(5):
            await _record(monitor, processing_time=float(i))

        page = await monitor.get_webhook_requests(WebhookFilters(page=2, limit=2))
        assert len(page.items) == 2
        assert page.total == 5
        assert page.total_pages == 3
        assert page.has_next
        assert page.has_prev

    @pytest.mark.asyncio
    async def test_filter_by_status_and_sort(self, monitor):
        await _record(monitor, processing_time=30.0)
        await _record(monitor, processing_time=10.0, status=WebhookStatus.FAILED)
        await _record(monitor, processing_time=20.0, status=WebhookStatus.FAILED)

        page = await monitor.get_webhook_requests(WebhookFilters(
            statuses=["failed"], sort_by="processing_time", sort_order="asc",
        ))
        assert [r.processing_time for r in page.items] == [10.0, 20.0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filters,field", [
        (WebhookFilters(page=0), "page"),
        (WebhookFilters(limit=0), "limit"),
        (WebhookFilters(limit=1001), "limit"),
        (WebhookFilters(sort_by="headers"), "sort_by"),
        (WebhookFilters(sort_order="sideways"), "sort_order"),
    ])
    async def test_invalid_filters(self, monitor, filters, field):
        with pytest.raises(ValidationError) as exc_info:
            await monitor.get_webhook_requests(filters)
        assert exc_info.value.field == field

    @pytest.mark.asyncio
    async def test_time_range_excludes_old_requests(self, monitor):
        await _record(monitor, created_at=utcnow() - timedelta(hours=3))
        await _record(monitor)

        page = await monitor.get_webhook_requests(WebhookFilters(time_range="last_hour"))
        assert page.total == 1


class TestStageObservers:
    """Stage completions hand alert rules off to a background task."""

    @pytest.mark.asyncio
    async def test_slow_alert_rules_do_not_block_completion(self, store, sink, resources):
        gate = asyncio.Event()
        alerts = MagicMock()

        async def process_stage(stage):
            await gate.wait()
            return []

        alerts.process_stage = AsyncMock(side_effect=process_stage)
        metrics = MagicMock()
        monitor = WebhookMonitor(store, broadcaster=sink, metrics_collector=metrics,
                                 alert_manager=alerts, resources=resources)
        stage = await monitor.start_processing_stage(StageInput(signal_id="sig_1", stage=ProcessingStageType.DECIDING))

        done = await asyncio.wait_for(
            monitor.complete_processing_stage(stage.id, StageStatus.COMPLETED), timeout=1,
        )

        assert done.status == StageStatus.COMPLETED
        metrics.record_stage_metrics.assert_called_once()
        assert len(monitor._pending) == 1

        gate.set()
        await monitor.flush()
        alerts.process_stage.assert_awaited_once_with(done)
        assert not monitor._pending

    @pytest.mark.asyncio
    async def test_alert_rule_failure_is_logged(self, store, sink, resources, caplog):
        alerts = MagicMock()
        alerts.process_stage = AsyncMock(side_effect=RuntimeError("alerts table locked"))
        monitor = WebhookMonitor(store, broadcaster=sink, alert_manager=alerts, resources=resources)
        stage = await monitor.start_processing_stage(StageInput(signal_id="sig_1", stage=ProcessingStageType.EXECUTING))

        with caplog.at_level(logging.ERROR, logger="src.monitoring.webhook_monitor"):
            await monitor.complete_processing_stage(stage.id, StageStatus.FAILED, error_message="broker down")
            await monitor.flush()

        assert any("alerts table locked" in r.getMessage() for r in caplog.records)


class TestDerivedViews:
    """Performance, real-time, statistics and health."""

    @pytest.mark.asyncio
    async def test_performance_metrics(self, monitor):
        for ms in (100.0, 200.0, 300.0):
            await _record(monitor, processing_time=ms, signal_id=f"sig_{int(ms)}")
        await _record(monitor, processing_time=400.0, status=WebhookStatus.FAILED, error_message="timeout")

        perf = await monitor.get_performance_metrics("last_hour")

        assert perf["total_webhooks"] == 4
        assert perf["successful_webhooks"] == 3
        assert perf["failed_webhooks"] == 1
        assert perf["success_rate"] == pytest.approx(75.0)
        assert perf["avg_processing_time"] == pytest.approx(250.0)
        assert perf["p95_processing_time"] == 400.0
        assert perf["max_processing_time"] == 400.0
        assert perf["signals_generated"] == 3
        assert perf["signal_conversion_rate"] == pytest.approx(75.0)
        assert perf["trades_executed"] == 0
        assert perf["top_errors"][0]["message"] == "timeout"
        assert perf["top_errors"][0]["percentage"] == pytest.approx(100.0)

    @pytest.mark.asyncio
    async def test_performance_metrics_empty(self, monitor):
        perf = await monitor.get_performance_metrics()
        assert perf["total_webhooks"] == 0
        assert perf["success_rate"] == 0.0
        assert perf["top_errors"] == []

    @pytest.mark.asyncio
    async def test_custom_range_requires_bounds(self, monitor):
        with pytest.raises(ValidationError):
            await monitor.get_performance_metrics("custom")

    @pytest.mark.asyncio
    async def test_real_time_metrics(self, monitor):
        await _record(monitor, processing_time=50.0)
        await _record(monitor, processing_time=150.0, status=WebhookStatus.REJECTED)

        realtime = await monitor.get_real_time_metrics()
        assert realtime["webhooks_last_minute"] == 2
        assert realtime["recent_avg_processing_time"] == pytest.approx(100.0)
        assert realtime["current_error_rate"] == pytest.approx(50.0)
        assert realtime["highest_alert_severity"] is None

    @pytest.mark.asyncio
    async def test_processing_statistics(self, monitor):
        for ms in (10.0, 20.0, 30.0):
            await _record(monitor, processing_time=ms)
        await _record(monitor, processing_time=40.0, status=WebhookStatus.REJECTED)

        stats = await monitor.get_processing_statistics()
        assert stats["total_webhooks"] == 4
        assert stats["rejected_webhooks"] == 1
        assert stats["median_processing_time"] == pytest.approx(25.0)
        assert stats["min_processing_time"] == 10.0
        assert stats["max_processing_time"] == 40.0


class TestSystemHealth:
    """Health classification and change broadcasts."""

    @pytest.mark.asyncio
    async def test_healthy_system(self, monitor):
        health = await monitor.get_system_health()
        assert health["status"] == "healthy"
        assert health["database"]["status"] == "connected"
        assert health["memory"]["percentage"] == 40.0
        assert health["queue"]["depth"] == 0

    @pytest.mark.asyncio
    async def test_high_memory_is_degraded(self, monitor, resources):
        resources.memory_percent.return_value = 95.0
        health = await monitor.get_system_health()
        assert health["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_unreachable_store_is_unhealthy(self, store, sink, resources):
        store.ping = AsyncMock(side_effect=RuntimeError("no route to host"))
        monitor = WebhookMonitor(store, broadcaster=sink, resources=resources)

        health = await monitor.get_system_health()
        assert health["status"] == "unhealthy"
        assert health["database"]["status"] == "disconnected"

    @pytest.mark.asyncio
    async def test_health_change_broadcast_once(self, monitor, sink, publisher):
        await monitor.get_system_health()
        await monitor.get_system_health()
        await sink.flush()

        changes = [m for m in publisher.history if m.event == "health.changed"]
        assert len(changes) == 1
        assert changes[0].payload["status"] == "healthy"
