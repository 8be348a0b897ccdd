"""Service error taxonomy and API error rendering."""

from src.api_errors.config import ErrorCode, ErrorConfig, ErrorSeverity
from src.api_errors.exceptions import (
    AppError,
    BrokerError,
    CollectionError,
    ConflictError,
    DatabaseError,
    InvalidStateError,
    MonitoringServiceError,
    NotFoundError,
    ValidationError,
)
from src.api_errors.handlers import (
    ErrorResponse,
    create_error_response,
    register_exception_handlers,
)

__all__ = [
    # Config
    "ErrorCode",
    "ErrorConfig",
    "ErrorSeverity",
    # Exceptions
    "AppError",
    "BrokerError",
    "CollectionError",
    "ConflictError",
    "DatabaseError",
    "InvalidStateError",
    "MonitoringServiceError",
    "NotFoundError",
    "ValidationError",
    # Handlers
    "ErrorResponse",
    "create_error_response",
    "register_exception_handlers",
]
