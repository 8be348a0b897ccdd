"""FastAPI Application Factory.

Creates the Signal Desk API: monitoring routes, pipeline routes, the
monitoring WebSocket and JSON error envelopes. One ``PipelineService``
per application lives on ``app.state.service``.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from src.api.config import APIConfig, DEFAULT_API_CONFIG
from src.api.routes import monitoring, monitoring_ws, pipeline
from src.api_errors.handlers import register_exception_handlers
from src.logging_config import configure_logging
from src.signal_pipeline.service import PipelineService

logger = logging.getLogger(__name__)


# ── Security Headers Middleware ───────────────────────────────────────


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds standard security headers to all HTTP responses."""

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


# ── App Factory ──────────────────────────────────────────────────────


def create_app(config: Optional[APIConfig] = None, service: Optional[PipelineService] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: API configuration. Uses defaults if not provided.
        service: Pre-built pipeline service; built from settings at
            startup when omitted.

    Returns:
        Configured FastAPI application.
    """
    config = config or DEFAULT_API_CONFIG

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        if getattr(app.state, "service", None) is None:
            app.state.service = PipelineService()
        await app.state.service.start(run_scheduler=config.run_scheduler)
        logger.info("Signal Desk API v%s starting up", config.version)
        yield
        logger.info("Signal Desk API shutting down")
        await app.state.service.stop()

    app = FastAPI(
        title=config.title,
        version=config.version,
        description=config.description,
        docs_url=config.docs_url,
        lifespan=lifespan,
    )
    app.state.service = service

    cors_origins = os.environ.get("SIGNALDESK_CORS_ORIGINS", "").split(",")
    cors_origins = [o.strip() for o in cors_origins if o.strip()] or config.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=config.cors_methods,
        allow_headers=config.cors_headers,
    )
    app.add_middleware(SecurityHeadersMiddleware)
    register_exception_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": config.version}

    app.include_router(monitoring.router, prefix=config.prefix)
    app.include_router(pipeline.router, prefix=config.prefix)
    # WebSocket path is absolute: /monitoring/ws
    app.include_router(monitoring_ws.router)

    logger.info("Signal Desk API v%s initialized", config.version)
    return app
