"""Signal pipeline records.

The signal, its enrichment output, the decision reached for it and the
rule set the decision was taken under.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from src.monitoring.models import new_id, utcnow


class SignalStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    ENRICHED = "enriched"
    TRADED = "traded"
    REJECTED = "rejected"


class DecisionType(str, Enum):
    TRADE = "TRADE"
    REJECT = "REJECT"
    WAIT = "WAIT"


class InstrumentType(str, Enum):
    STOCK = "STOCK"
    CALL = "CALL"
    PUT = "PUT"
    CALL_SPREAD = "CALL_SPREAD"
    PUT_SPREAD = "PUT_SPREAD"


@dataclass
class Signal:
    """An inbound trading opportunity."""
    ticker: str
    action: str
    entry_price: float
    timeframe_minutes: int = 5
    quality: int = 0
    stop_loss: Optional[float] = None
    target1: Optional[float] = None
    atr: Optional[float] = None
    status: SignalStatus = SignalStatus.PENDING
    raw_payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("sig"))
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_long(self) -> bool:
        return "LONG" in self.action.upper()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticker": self.ticker,
            "action": self.action,
            "entry_price": self.entry_price,
            "timeframe_minutes": self.timeframe_minutes,
            "quality": self.quality,
            "stop_loss": self.stop_loss,
            "target1": self.target1,
            "atr": self.atr,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class EnrichmentResult:
    """Market-data enrichment output for a signal."""
    signal_id: str
    data_quality: float
    aggregated_data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("enr"))
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class TradingRules:
    """A versioned rule set consumed by the decision engine."""
    version: str
    is_active: bool = False
    min_quality: int = 4
    min_confidence: float = 0.65
    max_risk_percent: float = 2.0
    weights: dict[str, float] = field(default_factory=lambda: {
        "quality": 0.25,
        "volume": 0.20,
        "oscillator": 0.20,
        "structure": 0.20,
        "market": 0.15,
    })
    parameters: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("rules"))
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Decision:
    """Verdict for a signal.

    Fields the executor reads are named; ``reasoning`` and ``weights``
    are passthrough data from the decision engine.
    """
    signal_id: str
    decision: DecisionType
    confidence: float
    instrument_type: InstrumentType = InstrumentType.STOCK
    quantity: Optional[int] = None
    position_size: Optional[float] = None
    call_strike: Optional[float] = None
    put_strike: Optional[float] = None
    expiration: Optional[date] = None
    risk_amount: Optional[float] = None
    expected_return: Optional[float] = None
    risk_reward_ratio: Optional[float] = None
    win_probability: Optional[float] = None
    model_version: str = "v1"
    reasoning: dict[str, Any] = field(default_factory=dict)
    weights: dict[str, float] = field(default_factory=dict)
    id: str = field(default_factory=lambda: new_id("dec"))
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_trade(self) -> bool:
        return self.decision == DecisionType.TRADE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "signal_id": self.signal_id,
            "decision": self.decision.value,
            "confidence": self.confidence,
            "instrument_type": self.instrument_type.value,
            "quantity": self.quantity,
            "position_size": self.position_size,
            "call_strike": self.call_strike,
            "put_strike": self.put_strike,
            "expiration": self.expiration.isoformat() if self.expiration else None,
            "model_version": self.model_version,
            "reasoning": dict(self.reasoning),
        }
