"""Per-signal pipeline: received -> enriching -> deciding -> executing -> completed.

Each step is bracketed by a processing stage. Stage bookkeeping lives in
``StageRecorder`` so the steps themselves read as plain business logic;
any failure of the monitoring side is logged there and never changes the
signal's outcome.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from src.api_errors.exceptions import NotFoundError
from src.logging_config import PerformanceTimer, SignalContext
from src.monitoring.config import ProcessingStageType, StageStatus
from src.monitoring.models import ProcessingStage, StageInput
from src.monitoring.webhook_monitor import WebhookMonitor
from src.signal_pipeline.models import Decision, DecisionType, SignalStatus
from src.signal_pipeline.ports import DecisionEngine, EnrichmentService, TradeExecutor
from src.store.base import DataStore

logger = logging.getLogger(__name__)
monitoring_errors = logging.getLogger("signal_desk.monitoring.errors")


@dataclass
class PipelineConfig:
    slow_stage_ms: float = 5000.0


DEFAULT_PIPELINE_CONFIG = PipelineConfig()


@dataclass
class ProcessingOutcome:
    """What one successful run of the pipeline produced."""
    signal_id: str
    decision: Decision
    trade_id: Optional[str] = None
    successful_brokers: list[str] = field(default_factory=list)
    total_brokers: int = 0

    @property
    def outcome(self) -> str:
        if self.trade_id is not None:
            return "traded"
        return "rejected" if self.decision.decision == DecisionType.REJECT else "waiting"

    def to_dict(self) -> dict:
        return {
            "signal_id": self.signal_id,
            "decision": self.decision.decision.value,
            "confidence": self.decision.confidence,
            "trade_id": self.trade_id,
            "successful_brokers": self.successful_brokers,
            "total_brokers": self.total_brokers,
            "outcome": self.outcome,
        }


class StageHandle:
    """Open stage yielded by ``StageRecorder.track``; fill ``metadata`` before exit."""

    def __init__(self, stage: Optional[ProcessingStage]) -> None:
        self.stage = stage
        self.metadata: dict[str, Any] = {}


class StageRecorder:
    """Writes processing stages through the monitor and swallows its failures."""

    def __init__(self, monitor: WebhookMonitor) -> None:
        self._monitor = monitor

    async def _start(self, signal_id: str, stage: ProcessingStageType) -> Optional[ProcessingStage]:
        try:
            return await self._monitor.start_processing_stage(StageInput(signal_id=signal_id, stage=stage))
        except Exception as exc:
            monitoring_errors.error("Could not start stage %s for %s: %s", stage.value, signal_id, exc)
            return None

    async def _complete(
        self,
        stage: Optional[ProcessingStage],
        status: StageStatus,
        metadata: dict[str, Any],
        error_message: Optional[str] = None,
    ) -> None:
        if stage is None:
            return
        try:
            await self._monitor.complete_processing_stage(stage.id, status, metadata, error_message)
        except Exception as exc:
            monitoring_errors.error("Could not complete stage %s: %s", stage.id, exc)

    async def mark(self, signal_id: str, stage: ProcessingStageType, metadata: dict[str, Any]) -> None:
        """Record a stage that starts and completes at once."""
        started = await self._start(signal_id, stage)
        await self._complete(started, StageStatus.COMPLETED, metadata)

    @asynccontextmanager
    async def track(self, signal_id: str, stage: ProcessingStageType) -> AsyncIterator[StageHandle]:
        """Bracket a block with a stage; any exit by exception, cancellation included,
        completes it as failed and propagates."""
        handle = StageHandle(await self._start(signal_id, stage))
        try:
            yield handle
        except BaseException as exc:
            if isinstance(exc, asyncio.CancelledError):
                message = "cancelled"
            else:
                message = str(exc) or type(exc).__name__
            await self._complete(handle.stage, StageStatus.FAILED, handle.metadata, message)
            raise
        await self._complete(handle.stage, StageStatus.COMPLETED, handle.metadata)


class SignalProcessor:
    """Runs one signal through enrichment, decision and execution.

    Example:
        processor = SignalProcessor(store, monitor, enrichment, engine, executor)
        outcome = await processor.process("sig_123")
    """

    def __init__(
        self,
        store: DataStore,
        monitor: WebhookMonitor,
        enrichment: EnrichmentService,
        decision_engine: DecisionEngine,
        executor: TradeExecutor,
        config: Optional[PipelineConfig] = None,
    ) -> None:
        self._store = store
        self._enrichment = enrichment
        self._decision_engine = decision_engine
        self._executor = executor
        self.config = config or DEFAULT_PIPELINE_CONFIG
        self.stages = StageRecorder(monitor)

    async def process(self, signal_id: str) -> ProcessingOutcome:
        """Raises whatever enrichment, decision or execution raised."""
        with SignalContext(signal_id=signal_id):
            await self.stages.mark(signal_id, ProcessingStageType.RECEIVED, {"signal_id": signal_id})

            async with self.stages.track(signal_id, ProcessingStageType.ENRICHING) as stage:
                with PerformanceTimer("stage:enriching", self.config.slow_stage_ms):
                    await self._store.update_signal_status(signal_id, SignalStatus.PROCESSING)
                    result = await self._enrichment.enrich(signal_id)
                    await self._store.save_enrichment(result)
                    await self._store.update_signal_status(signal_id, SignalStatus.ENRICHED)
                stage.metadata["data_quality"] = result.data_quality

            async with self.stages.track(signal_id, ProcessingStageType.DECIDING) as stage:
                with PerformanceTimer("stage:deciding", self.config.slow_stage_ms):
                    signal = await self._store.get_signal(signal_id)
                    if signal is None:
                        raise NotFoundError("Signal", signal_id)
                    enriched = await self._store.get_enrichment(signal_id)
                    rules = await self._store.get_active_trading_rules()
                    decision = await self._decision_engine.decide(signal, enriched, rules)
                    decision.signal_id = signal_id
                    await self._store.save_decision(decision)
                    await self._store.update_signal_status(
                        signal_id, SignalStatus.TRADED if decision.is_trade else SignalStatus.REJECTED,
                    )
                stage.metadata.update(decision=decision.decision.value, confidence=decision.confidence)

            outcome = ProcessingOutcome(signal_id=signal_id, decision=decision)
            if decision.is_trade:
                async with self.stages.track(signal_id, ProcessingStageType.EXECUTING) as stage:
                    with PerformanceTimer("stage:executing", self.config.slow_stage_ms):
                        report = await self._executor.execute_trade(signal, decision)
                    outcome.trade_id = report.trade_id
                    outcome.successful_brokers = [b.value for b in report.successful_brokers]
                    outcome.total_brokers = report.total_brokers
                    stage.metadata.update(
                        trade_id=report.trade_id,
                        successful_brokers=outcome.successful_brokers,
                        total_brokers=report.total_brokers,
                    )

            await self.stages.mark(signal_id, ProcessingStageType.COMPLETED, {"outcome": outcome.outcome})
            logger.info("Signal %s processed: %s (confidence %.2f)", signal_id,
                        decision.decision.value, decision.confidence)
            return outcome
