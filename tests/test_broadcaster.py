"""Tests for fire-and-forget monitoring broadcasts."""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from src.monitoring.broadcaster import BroadcastSink, InProcessPublisher, NullPublisher
from src.monitoring.config import (
    AlertCategory,
    AlertSeverity,
    EventName,
    ProcessingStageType,
    StageStatus,
    WebhookStatus,
)
from src.monitoring.models import ProcessingStage, SystemAlert, SystemMetrics, WebhookRequest


class TestBroadcastSink:
    """Emission, delivery and failure capture."""

    @pytest.mark.asyncio
    async def test_emit_delivers_to_publisher(self, sink, publisher):
        sink.emit("monitoring.system", "ping", {"ok": True})
        await sink.flush()
        assert len(publisher.history) == 1
        message = publisher.history[0]
        assert message.channel == "monitoring.system"
        assert message.payload == {"ok": True}
        assert sink.published_count == 1

    @pytest.mark.asyncio
    async def test_emit_returns_before_delivery(self):
        gate = asyncio.Event()

        class SlowPublisher:
            async def publish(self, channel, event, payload):
                await gate.wait()

        sink = BroadcastSink(SlowPublisher())
        sink.emit("monitoring.system", "ping", {})
        assert sink.published_count == 0
        gate.set()
        await sink.flush()
        assert sink.published_count == 1

    @pytest.mark.asyncio
    async def test_publisher_failure_goes_to_dead_letters(self, caplog):
        failing = AsyncMock()
        failing.publish.side_effect = RuntimeError("socket closed")
        sink = BroadcastSink(failing)

        with caplog.at_level(logging.WARNING, logger="signal_desk.monitoring.errors"):
            sink.emit("monitoring.alerts", "alert.created", {"id": "a1"})
            await sink.flush()

        assert sink.failed_count == 1
        message, error = sink.dead_letters[0]
        assert message.event == "alert.created"
        assert error == "socket closed"
        assert any("socket closed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_disabled_sink_emits_nothing(self, publisher):
        sink = BroadcastSink(publisher, enabled=False)
        sink.emit("monitoring.system", "ping", {})
        await sink.flush()
        assert len(publisher.history) == 0

    def test_emit_without_loop_is_dropped(self, publisher):
        sink = BroadcastSink(publisher)
        sink.emit("monitoring.system", "ping", {})
        assert len(publisher.history) == 0

    @pytest.mark.asyncio
    async def test_null_publisher_accepts_everything(self):
        sink = BroadcastSink(NullPublisher())
        sink.emit("monitoring.system", "ping", {})
        await sink.flush()
        assert sink.failed_count == 0


class TestTypedEmitters:
    """Event names chosen by the typed helpers."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,event", [
        (StageStatus.IN_PROGRESS, "stage.started"),
        (StageStatus.COMPLETED, "stage.completed"),
        (StageStatus.FAILED, "stage.failed"),
    ])
    async def test_stage_event_names(self, sink, publisher, status, event):
        sink.stage_event(ProcessingStage(signal_id="sig_1", stage=ProcessingStageType.ENRICHING, status=status))
        await sink.flush()
        assert publisher.history[-1].event == event
        assert publisher.history[-1].channel == "monitoring.stages"

    @pytest.mark.asyncio
    async def test_failed_webhook_is_webhook_failed(self, sink, publisher):
        request = WebhookRequest(source_ip="10.0.0.1", status=WebhookStatus.FAILED, error_message="bad json")
        sink.webhook_processed(request)
        await sink.flush()
        assert publisher.history[-1].event == "webhook.failed"
        assert publisher.history[-1].payload["error_message"] == "bad json"

    @pytest.mark.asyncio
    async def test_alert_and_metrics_events(self, sink, publisher):
        alert = SystemAlert(
            type="high_cpu_usage", severity=AlertSeverity.WARNING, category=AlertCategory.SYSTEM,
            title="High CPU", message="CPU at 90%",
        )
        sink.alert_event(alert, EventName.ALERT_CREATED)
        sink.metrics_updated(SystemMetrics(queue_depth=3))
        await sink.flush()

        events = {m.event: m for m in publisher.history}
        assert events["alert.created"].payload["alert_id"] == alert.id
        assert events["metrics.updated"].payload["queue_depth"] == 3


class TestInProcessPublisher:
    """Subscriber fan-out for the WebSocket route."""

    @pytest.mark.asyncio
    async def test_subscriber_receives_matching_channels_only(self):
        publisher = InProcessPublisher()
        alerts_only = publisher.subscribe({"monitoring.alerts"})
        everything = publisher.subscribe()

        await publisher.publish("monitoring.stages", "stage.started", {})
        await publisher.publish("monitoring.alerts", "alert.created", {})

        assert alerts_only.queue.qsize() == 1
        assert (await alerts_only.get()).event == "alert.created"
        assert everything.queue.qsize() == 2

    @pytest.mark.asyncio
    async def test_full_inbox_drops_instead_of_blocking(self):
        publisher = InProcessPublisher()
        sub = publisher.subscribe(maxsize=1)
        await publisher.publish("monitoring.system", "a", {})
        await publisher.publish("monitoring.system", "b", {})
        assert sub.dropped == 1

    def test_unsubscribe(self):
        publisher = InProcessPublisher()
        sub = publisher.subscribe()
        assert publisher.subscriber_count == 1
        publisher.unsubscribe(sub)
        assert publisher.subscriber_count == 0
