"""Pipeline API Routes.

Queue inspection and signal submission.
"""

import logging

from fastapi import APIRouter, Depends

from src.api.dependencies import get_service
from src.api.models import SignalCreateRequest
from src.api_errors.exceptions import NotFoundError
from src.signal_pipeline.service import PipelineService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/pipeline", tags=["Pipeline"])


@router.get("/queue")
async def queue_status(service: PipelineService = Depends(get_service)) -> dict:
    return service.queue.status().to_dict()


@router.post("/signals", status_code=202)
async def submit_signal(body: SignalCreateRequest, service: PipelineService = Depends(get_service)) -> dict:
    """Store a new signal and queue it; processing happens in the background."""
    signal = body.to_signal()
    queued = await service.submit_signal(signal)
    logger.info("Signal %s submitted via API: %s %s", signal.id, signal.action, signal.ticker)
    return {"signal": signal.to_dict(), "queued": queued.to_dict()}


@router.post("/signals/{signal_id}", status_code=202)
async def enqueue_signal(signal_id: str, service: PipelineService = Depends(get_service)) -> dict:
    """Queue an already stored signal, e.g. to reprocess a rejected one."""
    if await service.store.get_signal(signal_id) is None:
        raise NotFoundError("Signal", signal_id)
    queued = await service.queue.enqueue(signal_id)
    return {"queued": queued.to_dict()}


@router.get("/signals/{signal_id}")
async def get_signal(signal_id: str, service: PipelineService = Depends(get_service)) -> dict:
    signal = await service.store.get_signal(signal_id)
    if signal is None:
        raise NotFoundError("Signal", signal_id)
    decision = await service.store.get_decision(signal_id)
    trades = await service.store.list_trades(signal_id=signal_id)
    return {
        "signal": signal.to_dict(),
        "decision": decision.to_dict() if decision else None,
        "trades": [t.to_dict() for t in trades],
    }
