"""Error classification for monitoring operations."""

import logging
from contextlib import asynccontextmanager

from src.api_errors.exceptions import DatabaseError, MonitoringServiceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def store_operation(action: str):
    """Let classified monitoring errors through and wrap everything else.

    Example:
        async with store_operation("record webhook request"):
            await store.create_webhook_request(request)
    """
    try:
        yield
    except MonitoringServiceError:
        raise
    except Exception as exc:
        logger.error("Failed to %s: %s", action, exc, exc_info=True)
        raise DatabaseError(f"Failed to {action}", cause=exc) from exc
