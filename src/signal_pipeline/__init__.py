"""Signal pipeline: enrichment, decision and execution per queued signal.

Only the records are exported here; import the processor, queue and
service from their modules.
"""

from src.signal_pipeline.models import (
    Decision,
    DecisionType,
    EnrichmentResult,
    InstrumentType,
    Signal,
    SignalStatus,
    TradingRules,
)

__all__ = [
    "Decision",
    "DecisionType",
    "EnrichmentResult",
    "InstrumentType",
    "Signal",
    "SignalStatus",
    "TradingRules",
]
