"""Composition root for the signal desk.

``PipelineService`` builds the store, broadcaster, monitoring facade,
alerting, broker executor, processor and queue from ``Settings`` and owns
their lifecycle. Nothing here is a module-level singleton; the API and
the daemon each construct one service.
"""

import dataclasses
import logging
from typing import Optional

from src.monitoring.alerts import AlertManager
from src.monitoring.broadcaster import BroadcastSink, InProcessPublisher, Publisher
from src.monitoring.config import DEFAULT_MONITORING_CONFIG, MonitoringConfig
from src.monitoring.metrics_collector import MetricsCollector
from src.monitoring.resources import ProcessResources
from src.monitoring.scheduler import MetricsScheduler
from src.monitoring.webhook_monitor import WebhookMonitor
from src.paper_trading.clients import build_clients
from src.paper_trading.executor import MultiBrokerExecutor
from src.paper_trading.types import BrokerClient
from src.settings import Settings, get_settings
from src.signal_pipeline.defaults import PayloadEnrichment, QualityGateDecisionEngine
from src.signal_pipeline.models import Signal
from src.signal_pipeline.ports import DecisionEngine, EnrichmentService
from src.signal_pipeline.processor import SignalProcessor
from src.signal_pipeline.queue import QueuedSignal, SignalPipelineQueue
from src.store import create_store
from src.store.base import DataStore

logger = logging.getLogger(__name__)


class PipelineService:
    """Wires every component once and exposes them as attributes.

    Example:
        service = PipelineService()
        await service.start()
        await service.submit_signal(Signal(ticker="SPY", action="LONG_ENTRY", entry_price=450.0))
        await service.stop()
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[DataStore] = None,
        enrichment: Optional[EnrichmentService] = None,
        decision_engine: Optional[DecisionEngine] = None,
        clients: Optional[list[BrokerClient]] = None,
        publisher: Optional[Publisher] = None,
        monitoring_config: Optional[MonitoringConfig] = None,
        resources: Optional[ProcessResources] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store or create_store(self.settings)
        self.publisher = publisher or InProcessPublisher()
        self.broadcaster = BroadcastSink(self.publisher, enabled=self.settings.broadcast_enabled)

        config = monitoring_config or DEFAULT_MONITORING_CONFIG
        if config.queue_capacity != self.settings.queue_capacity:
            config = dataclasses.replace(config, queue_capacity=self.settings.queue_capacity)
        self.monitoring_config = config

        resources = resources or ProcessResources()
        self.metrics = MetricsCollector(self.store, self.broadcaster, config, resources)
        self.alerts = AlertManager(self.store, broadcaster=self.broadcaster, policy=config.policy)
        self.monitor = WebhookMonitor(
            self.store,
            broadcaster=self.broadcaster,
            config=config,
            metrics_collector=self.metrics,
            alert_manager=self.alerts,
            resources=resources,
        )
        self.scheduler = MetricsScheduler(self.metrics, self.alerts, self.settings.metrics_interval_seconds)

        self.clients = clients if clients is not None else build_clients(self.settings)
        self.executor = MultiBrokerExecutor(self.store, self.clients)
        self.processor = SignalProcessor(
            self.store,
            self.monitor,
            enrichment or PayloadEnrichment(self.store),
            decision_engine or QualityGateDecisionEngine(),
            self.executor,
        )
        self.queue = SignalPipelineQueue(self.processor, self.store, self.settings.pipeline_max_attempts)

    async def start(self, run_scheduler: bool = True) -> None:
        if run_scheduler:
            self.scheduler.start()
        logger.info("Pipeline service started (brokers: %s, store: %s)",
                    ", ".join(c.name.value for c in self.clients), type(self.store).__name__)

    async def stop(self) -> None:
        """Stop the scheduler, let queued signals finish and release broker connections."""
        await self.scheduler.stop()
        await self.queue.wait_idle()
        for client in self.clients:
            aclose = getattr(client, "aclose", None)
            if aclose is not None:
                await aclose()
        await self.monitor.flush()
        await self.broadcaster.flush()
        logger.info("Pipeline service stopped")

    async def submit_signal(self, signal: Signal) -> QueuedSignal:
        """Persist a new signal and queue it for processing."""
        await self.store.create_signal(signal)
        return await self.queue.enqueue(signal.id)
