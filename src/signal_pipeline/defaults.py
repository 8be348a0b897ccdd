"""Stand-in collaborators used when no market-data or scoring service is wired.

``PayloadEnrichment`` scores how complete the inbound alert is and
``QualityGateDecisionEngine`` trades on the alert's own quality grade.
Deployments replace both with real services through the ports.
"""

import logging
from typing import Optional

from src.api_errors.exceptions import NotFoundError
from src.signal_pipeline.models import (
    Decision,
    DecisionType,
    EnrichmentResult,
    InstrumentType,
    Signal,
    TradingRules,
)
from src.store.base import DataStore

logger = logging.getLogger(__name__)

_SCORED_FIELDS = ("stop_loss", "target1", "atr")
MAX_QUALITY = 5


class PayloadEnrichment:
    """Builds the enrichment record from the signal's own fields."""

    def __init__(self, store: DataStore) -> None:
        self._store = store

    async def enrich(self, signal_id: str) -> EnrichmentResult:
        signal = await self._store.get_signal(signal_id)
        if signal is None:
            raise NotFoundError("Signal", signal_id)
        present = [name for name in _SCORED_FIELDS if getattr(signal, name) is not None]
        return EnrichmentResult(
            signal_id=signal_id,
            data_quality=len(present) / len(_SCORED_FIELDS),
            aggregated_data={
                "ticker": signal.ticker,
                "entry_price": signal.entry_price,
                "fields_present": present,
                "payload": dict(signal.raw_payload),
            },
        )


class QualityGateDecisionEngine:
    """TRADE when the alert grade clears the active rule set, else REJECT."""

    def __init__(self, position_size: float = 1000.0) -> None:
        self.position_size = position_size

    async def decide(
        self,
        signal: Signal,
        enrichment: Optional[EnrichmentResult],
        rules: Optional[TradingRules],
    ) -> Decision:
        rules = rules or TradingRules(version="default", is_active=True)
        confidence = min(signal.quality, MAX_QUALITY) / MAX_QUALITY
        if enrichment is not None:
            confidence *= 0.5 + 0.5 * enrichment.data_quality

        passed = signal.quality >= rules.min_quality and confidence >= rules.min_confidence
        decision = Decision(
            signal_id=signal.id,
            decision=DecisionType.TRADE if passed else DecisionType.REJECT,
            confidence=round(confidence, 4),
            instrument_type=InstrumentType.STOCK,
            position_size=self.position_size,
            model_version=rules.version,
            reasoning={
                "quality": signal.quality,
                "min_quality": rules.min_quality,
                "min_confidence": rules.min_confidence,
                "data_quality": enrichment.data_quality if enrichment else None,
            },
        )
        logger.debug("Decision for %s: %s (%.2f)", signal.id, decision.decision.value, confidence)
        return decision
