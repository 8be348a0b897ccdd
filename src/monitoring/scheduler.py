"""Periodic metrics collection.

Runs ``MetricsCollector.collect_metrics`` every interval and hands each
snapshot, plus the trailing stage failure rate, to the ``AlertManager``.
A failed tick is logged and the loop keeps going.
"""

import asyncio
import logging
from typing import Optional

from src.api_errors.exceptions import CollectionError
from src.monitoring.alerts import AlertManager
from src.monitoring.metrics_collector import MetricsCollector
from src.monitoring.models import SystemMetrics

logger = logging.getLogger(__name__)


class MetricsScheduler:
    """Background loop around the metrics collector."""

    def __init__(
        self,
        collector: MetricsCollector,
        alert_manager: Optional[AlertManager] = None,
        interval_seconds: float = 60.0,
    ) -> None:
        self.collector = collector
        self.alert_manager = alert_manager
        self.interval_seconds = interval_seconds
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Optional[SystemMetrics]:
        """One collection plus alert evaluation; None when collection failed."""
        self.ticks += 1
        try:
            snapshot = await self.collector.collect_metrics()
        except CollectionError as exc:
            logger.error("Metrics tick %d failed: %s", self.ticks, exc.message)
            return None

        if self.alert_manager is not None:
            try:
                await self.alert_manager.process_metrics(snapshot)
                await self.alert_manager.process_stage_window()
                await self.alert_manager.run_maintenance()
            except Exception as exc:
                logger.error("Alert evaluation failed on tick %d: %s", self.ticks, exc, exc_info=True)
        return snapshot

    async def run(self) -> None:
        logger.info("Metrics scheduler started (every %.0fs)", self.interval_seconds)
        while not self._stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Metrics scheduler stopped after %d ticks", self.ticks)

    def start(self) -> asyncio.Task:
        if self.is_running:
            return self._task
        self._stop.clear()
        self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
