"""Exception Handlers & Error Response Builder.

FastAPI exception handlers that render service errors as a uniform
JSON envelope.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.api_errors.config import (
    DEFAULT_ERROR_CONFIG,
    ERROR_SEVERITY_MAP,
    ERROR_STATUS_MAP,
    ErrorCode,
    ErrorConfig,
    ErrorSeverity,
)
from src.api_errors.exceptions import AppError
from src.logging_config.context import get_correlation_id

logger = logging.getLogger(__name__)

_SEVERITY_LEVELS = {
    ErrorSeverity.CRITICAL: logging.CRITICAL,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}


@dataclass
class ErrorResponse:
    """Structured error response envelope."""

    code: str
    message: str
    status_code: int = 500
    details: List[Dict[str, Any]] = field(default_factory=list)
    correlation_id: Optional[str] = None
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": {
                "code": self.code,
                "message": self.message,
                "timestamp": self.timestamp,
            }
        }
        if self.details:
            body["error"]["details"] = self.details
        if self.correlation_id:
            body["error"]["correlation_id"] = self.correlation_id
        return body


def create_error_response(
    error_code: ErrorCode,
    message: str,
    details: Optional[List[Dict[str, Any]]] = None,
    correlation_id: Optional[str] = None,
) -> ErrorResponse:
    return ErrorResponse(
        code=error_code.value,
        message=message,
        status_code=ERROR_STATUS_MAP.get(error_code, 500),
        details=details or [],
        correlation_id=correlation_id,
    )


def handle_app_error(exc: AppError, config: Optional[ErrorConfig] = None) -> ErrorResponse:
    """Log an AppError at its mapped severity and build the response."""
    config = config or DEFAULT_ERROR_CONFIG
    if config.log_all_errors:
        severity = ERROR_SEVERITY_MAP.get(exc.error_code, ErrorSeverity.MEDIUM)
        logger.log(
            _SEVERITY_LEVELS[severity],
            "Service error [%s] (%s): %s",
            exc.error_code.value, exc.status_code, exc.message,
        )
    return create_error_response(
        exc.error_code,
        exc.message,
        details=exc.details,
        correlation_id=get_correlation_id() if config.include_correlation_id else None,
    )


def handle_unhandled_error(exc: Exception, config: Optional[ErrorConfig] = None) -> ErrorResponse:
    """Build a safe 500 response for anything outside the hierarchy."""
    config = config or DEFAULT_ERROR_CONFIG
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    message = "An internal error occurred"
    if not config.suppress_internal_details:
        message = f"{type(exc).__name__}: {exc}"

    return create_error_response(
        ErrorCode.INTERNAL_ERROR,
        message,
        correlation_id=get_correlation_id() if config.include_correlation_id else None,
    )


def register_exception_handlers(app: FastAPI, config: Optional[ErrorConfig] = None) -> None:
    """Install JSON error handlers on a FastAPI application."""
    config = config or DEFAULT_ERROR_CONFIG

    async def _app_error(request: Request, exc: AppError) -> JSONResponse:
        response = handle_app_error(exc, config)
        return JSONResponse(status_code=response.status_code, content=response.to_dict())

    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        response = handle_unhandled_error(exc, config)
        return JSONResponse(status_code=response.status_code, content=response.to_dict())

    app.add_exception_handler(AppError, _app_error)
    app.add_exception_handler(Exception, _unhandled)
    logger.debug("Registered service exception handlers")
