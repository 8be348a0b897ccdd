"""Tests for the signal pipeline: default collaborators, processor and queue."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.api_errors.exceptions import NotFoundError
from src.monitoring.config import ProcessingStageType, StageStatus
from src.monitoring.webhook_monitor import WebhookMonitor
from src.paper_trading.executor import MultiBrokerExecutor
from src.paper_trading.types import BrokerType, OrderResponse, OrderStatus, TradeStatus
from src.signal_pipeline.defaults import PayloadEnrichment, QualityGateDecisionEngine
from src.signal_pipeline.models import (
    DecisionType,
    EnrichmentResult,
    SignalStatus,
    TradingRules,
)
from src.signal_pipeline.processor import SignalProcessor
from src.signal_pipeline.queue import SignalPipelineQueue


def _broker(broker: BrokerType):
    client = AsyncMock()
    client.name = broker

    async def place_order(request):
        return OrderResponse(order_id=f"{broker.value}-1", broker=broker, status=OrderStatus.FILLED,
                             filled_quantity=float(request.quantity), filled_price=request.limit_price)

    client.place_order.side_effect = place_order
    return client


def _blocked_on(gate: asyncio.Event):
    async def process(signal_id):
        await gate.wait()
    return process


@pytest.fixture
def monitor(store, sink, resources):
    return WebhookMonitor(store, broadcaster=sink, resources=resources)


@pytest.fixture
def processor(store, monitor):
    return SignalProcessor(
        store, monitor,
        PayloadEnrichment(store),
        QualityGateDecisionEngine(),
        MultiBrokerExecutor(store, [_broker(b) for b in BrokerType]),
    )


class TestDefaults:
    """Stand-in enrichment and decision engine."""

    @pytest.mark.asyncio
    async def test_enrichment_scores_completeness(self, store, make_signal):
        signal = await store.create_signal(make_signal(atr=None))
        result = await PayloadEnrichment(store).enrich(signal.id)
        assert result.data_quality == pytest.approx(2 / 3)
        assert result.aggregated_data["fields_present"] == ["stop_loss", "target1"]

    @pytest.mark.asyncio
    async def test_enrichment_unknown_signal(self, store):
        with pytest.raises(NotFoundError):
            await PayloadEnrichment(store).enrich("sig_missing")

    @pytest.mark.asyncio
    async def test_high_quality_trades(self, make_signal):
        signal = make_signal(quality=5)
        decision = await QualityGateDecisionEngine().decide(
            signal, EnrichmentResult(signal_id=signal.id, data_quality=1.0), None,
        )
        assert decision.decision == DecisionType.TRADE
        assert decision.confidence == 1.0
        assert decision.position_size == 1000.0

    @pytest.mark.asyncio
    async def test_poor_data_lowers_confidence(self, make_signal):
        signal = make_signal(quality=4)
        decision = await QualityGateDecisionEngine().decide(
            signal, EnrichmentResult(signal_id=signal.id, data_quality=0.0), None,
        )
        assert decision.confidence == pytest.approx(0.4)
        assert decision.decision == DecisionType.REJECT

    @pytest.mark.asyncio
    async def test_rules_raise_the_bar(self, make_signal):
        rules = TradingRules(version="strict", is_active=True, min_quality=5)
        decision = await QualityGateDecisionEngine().decide(make_signal(quality=4), None, rules)
        assert decision.decision == DecisionType.REJECT
        assert decision.model_version == "strict"


class TestSignalProcessor:
    """One signal through every stage."""

    @pytest.mark.asyncio
    async def test_traded_signal_end_to_end(self, store, monitor, processor, make_signal):
        signal = await store.create_signal(make_signal())

        outcome = await processor.process(signal.id)

        assert outcome.outcome == "traded"
        assert sorted(outcome.successful_brokers) == ["alpaca", "tradier", "twelvedata"]
        stages = await monitor.get_processing_stages(signal.id)
        assert [s.stage for s in stages] == [
            ProcessingStageType.RECEIVED,
            ProcessingStageType.ENRICHING,
            ProcessingStageType.DECIDING,
            ProcessingStageType.EXECUTING,
            ProcessingStageType.COMPLETED,
        ]
        assert all(s.status == StageStatus.COMPLETED for s in stages)
        assert stages[1].metadata["data_quality"] == 1.0
        assert stages[2].metadata["decision"] == "TRADE"
        assert stages[3].metadata["total_brokers"] == 3

        trades = await store.list_trades(signal_id=signal.id)
        assert len(trades) == 3
        assert all(t.status == TradeStatus.OPEN and t.quantity == 2 for t in trades)
        assert (await store.get_signal(signal.id)).status == SignalStatus.TRADED
        pipeline = await monitor.get_pipeline_status(signal.id)
        assert pipeline.status == StageStatus.COMPLETED
        assert pipeline.current_stage == ProcessingStageType.COMPLETED

    @pytest.mark.asyncio
    async def test_rejected_signal_skips_execution(self, store, monitor, processor, make_signal):
        signal = await store.create_signal(make_signal(quality=2))

        outcome = await processor.process(signal.id)

        assert outcome.outcome == "rejected"
        assert outcome.trade_id is None
        stage_types = [s.stage for s in await monitor.get_processing_stages(signal.id)]
        assert ProcessingStageType.EXECUTING not in stage_types
        assert await store.list_trades(signal_id=signal.id) == []
        assert (await store.get_signal(signal.id)).status == SignalStatus.REJECTED
        decision = await store.get_decision(signal.id)
        assert decision.decision == DecisionType.REJECT

    @pytest.mark.asyncio
    async def test_execution_failure_fails_the_stage(self, store, monitor, make_signal):
        executor = AsyncMock()
        executor.execute_trade.side_effect = RuntimeError("all brokers down")
        processor = SignalProcessor(store, monitor, PayloadEnrichment(store),
                                    QualityGateDecisionEngine(), executor)
        signal = await store.create_signal(make_signal())

        with pytest.raises(RuntimeError):
            await processor.process(signal.id)

        stages = {s.stage: s for s in await monitor.get_processing_stages(signal.id)}
        assert stages[ProcessingStageType.EXECUTING].status == StageStatus.FAILED
        assert stages[ProcessingStageType.EXECUTING].error_message == "all brokers down"
        assert ProcessingStageType.COMPLETED not in stages
        assert (await monitor.get_pipeline_status(signal.id)).status == StageStatus.FAILED

    @pytest.mark.asyncio
    async def test_monitoring_failure_does_not_change_outcome(self, store, make_signal, caplog):
        broken_monitor = MagicMock()
        broken_monitor.start_processing_stage = AsyncMock(side_effect=RuntimeError("stage table locked"))
        broken_monitor.complete_processing_stage = AsyncMock()
        processor = SignalProcessor(
            store, broken_monitor, PayloadEnrichment(store), QualityGateDecisionEngine(),
            MultiBrokerExecutor(store, [_broker(BrokerType.TRADIER)]),
        )
        signal = await store.create_signal(make_signal())

        with caplog.at_level(logging.ERROR, logger="signal_desk.monitoring.errors"):
            outcome = await processor.process(signal.id)

        assert outcome.outcome == "traded"
        assert (await store.get_signal(signal.id)).status == SignalStatus.TRADED
        broken_monitor.complete_processing_stage.assert_not_awaited()
        assert any("stage table locked" in r.getMessage() for r in caplog.records)


class TestSignalPipelineQueue:
    """FIFO draining, retries and clearing."""

    @pytest.mark.asyncio
    async def test_processes_in_fifo_order_one_at_a_time(self, store):
        order = []
        running = 0
        peak = 0

        async def process(signal_id):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0)
            order.append(signal_id)
            running -= 1

        processor = MagicMock()
        processor.process = AsyncMock(side_effect=process)
        queue = SignalPipelineQueue(processor, store)

        for signal_id in ("a", "b", "c"):
            await queue.enqueue(signal_id)
        assert queue.status().is_processing
        await queue.wait_idle()

        assert order == ["a", "b", "c"]
        assert peak == 1
        assert queue.status().to_dict() == {"queue_length": 0, "is_processing": False, "signals": []}

    @pytest.mark.asyncio
    async def test_enqueue_returns_before_processing(self, store):
        gate = asyncio.Event()
        processor = MagicMock()
        processor.process = AsyncMock(side_effect=_blocked_on(gate))
        queue = SignalPipelineQueue(processor, store)

        item = await queue.enqueue("a")
        await queue.enqueue("b")

        assert item.attempts == 0
        assert queue.status().queue_length >= 1
        gate.set()
        await queue.wait_idle()

    @pytest.mark.asyncio
    async def test_failing_signal_rejected_after_three_attempts(self, store, monitor, make_signal):
        enrichment = AsyncMock()
        enrichment.enrich.side_effect = RuntimeError("market data unavailable")
        processor = SignalProcessor(store, monitor, enrichment, QualityGateDecisionEngine(),
                                    MultiBrokerExecutor(store, []))
        queue = SignalPipelineQueue(processor, store, max_attempts=3)
        signal = await store.create_signal(make_signal())

        await queue.enqueue(signal.id)
        await queue.wait_idle()

        assert enrichment.enrich.await_count == 3
        assert (await store.get_signal(signal.id)).status == SignalStatus.REJECTED
        assert all(s.signal_id != signal.id for s in queue.status().signals)
        pipeline = await monitor.get_pipeline_status(signal.id)
        assert pipeline.status == StageStatus.FAILED
        assert pipeline.current_stage == ProcessingStageType.ENRICHING

    @pytest.mark.asyncio
    async def test_retry_goes_to_the_tail(self, store):
        order = []
        failed_once = set()

        async def process(signal_id):
            order.append(signal_id)
            if signal_id == "a" and signal_id not in failed_once:
                failed_once.add(signal_id)
                raise RuntimeError("transient")

        processor = MagicMock()
        processor.process = AsyncMock(side_effect=process)
        queue = SignalPipelineQueue(processor, store)

        await queue.enqueue("a")
        await queue.enqueue("b")
        await queue.wait_idle()

        assert order == ["a", "b", "a"]

    @pytest.mark.asyncio
    async def test_rejection_of_unknown_signal_is_logged(self, store, caplog):
        processor = MagicMock()
        processor.process = AsyncMock(side_effect=RuntimeError("boom"))
        queue = SignalPipelineQueue(processor, store, max_attempts=1)

        with caplog.at_level(logging.ERROR, logger="src.signal_pipeline.queue"):
            await queue.enqueue("sig_missing")
            await queue.wait_idle()

        assert any("Could not mark signal sig_missing rejected" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_clear_drops_queue_and_stops_worker(self, store):
        gate = asyncio.Event()
        processor = MagicMock()
        processor.process = AsyncMock(side_effect=_blocked_on(gate))
        queue = SignalPipelineQueue(processor, store)

        await queue.enqueue("a")
        await queue.enqueue("b")
        await asyncio.sleep(0)
        queue.clear()

        status = queue.status()
        assert status.queue_length == 0
        assert status.is_processing is False
        await queue.wait_idle()
        assert processor.process.await_count <= 1

    @pytest.mark.asyncio
    async def test_clear_mid_stage_closes_the_stage_as_failed(self, store, monitor, make_signal):
        started = asyncio.Event()

        async def enrich(signal_id):
            started.set()
            await asyncio.Event().wait()

        enrichment = AsyncMock()
        enrichment.enrich.side_effect = enrich
        processor = SignalProcessor(store, monitor, enrichment, QualityGateDecisionEngine(),
                                    MultiBrokerExecutor(store, []))
        queue = SignalPipelineQueue(processor, store)
        signal = await store.create_signal(make_signal())

        await queue.enqueue(signal.id)
        await asyncio.wait_for(started.wait(), timeout=1)
        worker = queue._worker
        queue.clear()
        await asyncio.gather(worker, return_exceptions=True)

        stages = {s.stage: s for s in await monitor.get_processing_stages(signal.id)}
        assert stages[ProcessingStageType.ENRICHING].status == StageStatus.FAILED
        assert stages[ProcessingStageType.ENRICHING].error_message == "cancelled"
        assert await monitor.get_active_processing_stages() == []
