"""Collaborators the signal pipeline depends on.

The processor only sees these protocols; concrete implementations are
wired in ``src.signal_pipeline.service``.
"""

from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

from src.signal_pipeline.models import Decision, EnrichmentResult, Signal, TradingRules

if TYPE_CHECKING:
    from src.paper_trading.executor import ExecutionReport


@runtime_checkable
class EnrichmentService(Protocol):
    """Gathers market data for a signal and scores its completeness."""

    async def enrich(self, signal_id: str) -> EnrichmentResult: ...


@runtime_checkable
class DecisionEngine(Protocol):
    """Turns a signal and its enrichment into TRADE / REJECT / WAIT."""

    async def decide(
        self,
        signal: Signal,
        enrichment: Optional[EnrichmentResult],
        rules: Optional[TradingRules],
    ) -> Decision: ...


@runtime_checkable
class TradeExecutor(Protocol):
    """Places an approved trade (``MultiBrokerExecutor`` in production)."""

    async def execute_trade(self, signal: Signal, decision: Decision) -> "ExecutionReport": ...
