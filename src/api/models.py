"""API Request Models.

Pydantic schemas for request bodies. Responses are the monitoring
records' own ``to_dict()`` output.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from src.monitoring.config import ProcessingStageType, StageStatus, WebhookStatus
from src.monitoring.models import StageInput, WebhookRequest, WebhookRequestUpdate
from src.signal_pipeline.models import Signal


# ─── Webhooks ────────────────────────────────────────────────────────────


class WebhookRequestCreate(BaseModel):
    source_ip: str = Field(min_length=1)
    user_agent: Optional[str] = None
    headers: dict[str, Any] = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)
    payload_size: int = Field(default=0, ge=0)
    signature: Optional[str] = None
    processing_time: float = Field(default=0.0, ge=0)
    status: WebhookStatus = WebhookStatus.SUCCESS
    error_message: Optional[str] = None
    error_stack: Optional[str] = None
    signal_id: Optional[str] = None

    def to_record(self) -> WebhookRequest:
        return WebhookRequest(**self.model_dump())


class WebhookRequestPatch(BaseModel):
    signal_id: Optional[str] = None
    processing_time: Optional[float] = Field(default=None, ge=0)
    status: Optional[WebhookStatus] = None
    error_message: Optional[str] = None
    error_stack: Optional[str] = None

    def to_update(self) -> WebhookRequestUpdate:
        return WebhookRequestUpdate(**self.model_dump())


# ─── Processing stages ──────────────────────────────────────────────────


class StageStartRequest(BaseModel):
    signal_id: str = Field(min_length=1)
    stage: ProcessingStageType
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_input(self) -> StageInput:
        return StageInput(signal_id=self.signal_id, stage=self.stage, metadata=dict(self.metadata))


class StageCompleteRequest(BaseModel):
    status: StageStatus = StageStatus.COMPLETED
    metadata: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None


# ─── Alerts ─────────────────────────────────────────────────────────────


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str = "api"


# ─── Signals ────────────────────────────────────────────────────────────


class SignalCreateRequest(BaseModel):
    ticker: str = Field(min_length=1)
    action: str = Field(min_length=1)
    entry_price: float = Field(gt=0)
    timeframe_minutes: int = 5
    quality: int = Field(default=0, ge=0, le=5)
    stop_loss: Optional[float] = None
    target1: Optional[float] = None
    atr: Optional[float] = None
    raw_payload: dict[str, Any] = Field(default_factory=dict)

    def to_signal(self) -> Signal:
        data = self.model_dump()
        data["ticker"] = data["ticker"].upper()
        return Signal(**data)
