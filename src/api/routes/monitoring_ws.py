"""Monitoring WebSocket endpoint.

Streams every broadcast of the monitoring subsystem (webhooks, stages,
alerts, metrics, health) to connected clients. Clients may narrow the
stream with ``?channels=monitoring.alerts,monitoring.stages``.
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from src.api.config import DEFAULT_WS_CONFIG
from src.monitoring.broadcaster import InProcessPublisher
from src.monitoring.config import Channel

logger = logging.getLogger(__name__)
router = APIRouter(tags=["monitoring-websocket"])

_KNOWN_CHANNELS = {c.value for c in Channel}


@router.websocket("/monitoring/ws")
async def monitoring_websocket(websocket: WebSocket) -> None:
    publisher = websocket.app.state.service.publisher
    if not isinstance(publisher, InProcessPublisher):
        await websocket.close(code=1011, reason="Broadcast streaming not available")
        return

    requested = websocket.query_params.get("channels", "")
    channels = {c.strip() for c in requested.split(",") if c.strip()}
    unknown = channels - _KNOWN_CHANNELS
    if unknown:
        await websocket.close(code=4400, reason=f"Unknown channels: {', '.join(sorted(unknown))}")
        return

    await websocket.accept()
    subscription = publisher.subscribe(channels or None, maxsize=DEFAULT_WS_CONFIG.subscriber_queue_size)
    logger.info("Monitoring client connected (%d subscribers)", publisher.subscriber_count)
    try:
        await websocket.send_json({"event": "connected", "channels": sorted(channels or _KNOWN_CHANNELS)})
        while True:
            message = await subscription.get()
            await websocket.send_json(message.to_dict())
    except WebSocketDisconnect:
        logger.info("Monitoring client disconnected")
    finally:
        publisher.unsubscribe(subscription)
