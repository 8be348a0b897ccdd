"""Real-time broadcast of monitoring events.

``BroadcastSink.emit`` never raises and never blocks its caller: each
event is handed to the publisher in a detached asyncio task, and any
publisher failure is recorded in a bounded dead-letter list and logged
on the ``signal_desk.monitoring.errors`` error-sink logger.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable

from src.monitoring.config import Channel, EventName, StageStatus
from src.monitoring.models import (
    ProcessingStage,
    SystemAlert,
    SystemMetrics,
    WebhookRequest,
    utcnow,
)

logger = logging.getLogger(__name__)
error_sink = logging.getLogger("signal_desk.monitoring.errors")


@dataclass
class BroadcastMessage:
    channel: str
    event: str
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "channel": self.channel,
            "event": self.event,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


@runtime_checkable
class Publisher(Protocol):
    """Transport that actually delivers a broadcast."""

    async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None: ...


class NullPublisher:
    """Publisher used when broadcasting is not configured."""

    async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        logger.debug("Broadcast disabled, dropping %s/%s", channel, event)


class Subscription:
    """A consumer's bounded inbox on an InProcessPublisher."""

    def __init__(self, channels: Optional[set[str]] = None, maxsize: int = 100) -> None:
        self.channels = channels
        self.queue: asyncio.Queue[BroadcastMessage] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def wants(self, channel: str) -> bool:
        return not self.channels or channel in self.channels

    async def get(self) -> BroadcastMessage:
        return await self.queue.get()


class InProcessPublisher:
    """Fans broadcasts out to in-process subscribers (the WebSocket route).

    Keeps the last ``buffer_size`` messages so late joiners and tests
    can inspect recent traffic.
    """

    def __init__(self, buffer_size: int = 50) -> None:
        self._subscriptions: list[Subscription] = []
        self.history: deque[BroadcastMessage] = deque(maxlen=buffer_size)

    def subscribe(self, channels: Optional[set[str]] = None, maxsize: int = 100) -> Subscription:
        sub = Subscription(channels, maxsize)
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    async def publish(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        message = BroadcastMessage(channel=channel, event=event, payload=payload)
        self.history.append(message)
        for sub in list(self._subscriptions):
            if not sub.wants(channel):
                continue
            try:
                sub.queue.put_nowait(message)
            except asyncio.QueueFull:
                sub.dropped += 1
                logger.warning("Subscriber inbox full, dropped %s/%s", channel, event)


class BroadcastSink:
    """Fire-and-forget event emission for the monitoring subsystem.

    Example:
        sink = BroadcastSink(InProcessPublisher())
        sink.stage_event(stage)       # returns immediately
        await sink.flush()            # tests: wait for deliveries
    """

    def __init__(self, publisher: Optional[Publisher] = None, enabled: bool = True,
                 max_dead_letters: int = 100) -> None:
        self.publisher: Publisher = publisher or NullPublisher()
        self.enabled = enabled
        self._pending: set[asyncio.Task] = set()
        self.dead_letters: deque[tuple[BroadcastMessage, str]] = deque(maxlen=max_dead_letters)
        self.published_count = 0
        self.failed_count = 0

    def emit(self, channel: str, event: str, payload: dict[str, Any]) -> None:
        """Schedule delivery of one event and return immediately."""
        if not self.enabled:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            error_sink.warning("No running event loop, broadcast %s/%s dropped", channel, event)
            return
        message = BroadcastMessage(channel=channel, event=event, payload=payload)
        task = loop.create_task(self._deliver(message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, message: BroadcastMessage) -> None:
        try:
            await self.publisher.publish(message.channel, message.event, message.payload)
            self.published_count += 1
        except Exception as exc:
            self.failed_count += 1
            self.dead_letters.append((message, str(exc)))
            error_sink.warning(
                "Broadcast %s/%s failed: %s", message.channel, message.event, exc,
                extra={"channel": message.channel, "event": message.event},
            )

    async def flush(self) -> None:
        """Wait for every in-flight delivery to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Typed emitters ───────────────────────────────────────────────

    def webhook_received(self, request: WebhookRequest) -> None:
        self.emit(Channel.WEBHOOKS.value, EventName.WEBHOOK_RECEIVED.value, {
            "webhook_id": request.id,
            "source_ip": request.source_ip,
            "status": request.status.value,
            "payload_size": request.payload_size,
            "ticker": request.ticker,
            "timestamp": request.created_at.isoformat(),
        })

    def webhook_processed(self, request: WebhookRequest) -> None:
        failed = request.status.value != "success"
        event = EventName.WEBHOOK_FAILED if failed else EventName.WEBHOOK_PROCESSED
        self.emit(Channel.WEBHOOKS.value, event.value, {
            "webhook_id": request.id,
            "status": request.status.value,
            "processing_time": request.processing_time,
            "signal_id": request.signal_id,
            "error_message": request.error_message,
            "timestamp": utcnow().isoformat(),
        })

    def stage_event(self, stage: ProcessingStage) -> None:
        if stage.status == StageStatus.IN_PROGRESS:
            event = EventName.STAGE_STARTED
        elif stage.status == StageStatus.FAILED:
            event = EventName.STAGE_FAILED
        else:
            event = EventName.STAGE_COMPLETED
        self.emit(Channel.STAGES.value, event.value, {
            "stage_id": stage.id,
            "signal_id": stage.signal_id,
            "stage": stage.stage.value,
            "status": stage.status.value,
            "duration": stage.duration,
            "error_message": stage.error_message,
            "metadata": dict(stage.metadata),
            "timestamp": utcnow().isoformat(),
        })

    def alert_event(self, alert: SystemAlert, event: EventName) -> None:
        self.emit(Channel.ALERTS.value, event.value, {
            "alert_id": alert.id,
            "type": alert.type,
            "severity": alert.severity.value,
            "category": alert.category.value,
            "message": alert.message,
            "acknowledged": alert.acknowledged,
            "resolved": alert.resolved,
            "acknowledged_by": alert.acknowledged_by,
            "timestamp": utcnow().isoformat(),
        })

    def metrics_updated(self, snapshot: SystemMetrics) -> None:
        self.emit(Channel.METRICS.value, EventName.METRICS_UPDATED.value, snapshot.to_dict())

    def health_changed(self, health: dict[str, Any]) -> None:
        self.emit(Channel.HEALTH.value, EventName.HEALTH_CHANGED.value, health)
