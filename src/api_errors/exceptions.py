"""Service Exception Hierarchy.

Typed exceptions shared by the stage tracker, webhook monitor, metrics
collector and paper-trading executor. Each carries an ErrorCode so the
API layer can render it with the right HTTP status, and so the pipeline
queue can tell deterministic failures from transient ones.
"""

from typing import Any, Dict, List, Optional

from src.api_errors.config import ERROR_STATUS_MAP, ErrorCode


class AppError(Exception):
    """Base exception for all signal-desk errors."""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = ERROR_STATUS_MAP.get(error_code, 500)
        self.details = details or []

    @property
    def code(self) -> str:
        return self.error_code.value


class MonitoringServiceError(AppError):
    """Base for errors raised by the monitoring subsystem."""

    transient = False


class ValidationError(MonitoringServiceError):
    """Malformed input to a CRUD or stage operation."""

    def __init__(self, message: str = "Validation failed", field: Optional[str] = None):
        details = [{"field": field, "issue": message}] if field else None
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)
        self.field = field


class NotFoundError(MonitoringServiceError):
    """Referenced ID is absent."""

    def __init__(self, resource: str, resource_id: str):
        super().__init__(
            f"{resource} with ID {resource_id} not found",
            ErrorCode.NOT_FOUND,
            [{"resource_type": resource, "resource_id": resource_id}],
        )
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(MonitoringServiceError):
    """Action conflicts with existing state, e.g. a duplicate stage."""

    def __init__(self, message: str = "Resource conflict"):
        super().__init__(message, ErrorCode.CONFLICT_ERROR)


class InvalidStateError(MonitoringServiceError):
    """Illegal status transition."""

    def __init__(self, message: str, current_state: Optional[str] = None):
        details = [{"current_state": current_state}] if current_state else None
        super().__init__(message, ErrorCode.INVALID_STATE, details)
        self.current_state = current_state


class CollectionError(MonitoringServiceError):
    """Metrics gathering failed."""

    transient = True

    def __init__(self, message: str = "Metrics collection failed"):
        super().__init__(message, ErrorCode.COLLECTION_ERROR)


class DatabaseError(MonitoringServiceError):
    """Wraps a persistence failure that is not otherwise classified."""

    transient = True

    def __init__(self, message: str = "Database operation failed", cause: Optional[BaseException] = None):
        super().__init__(message, ErrorCode.DATABASE_ERROR)
        self.cause = cause


class BrokerError(AppError):
    """A broker adapter call failed without a usable response."""

    def __init__(self, broker: str, message: str):
        super().__init__(f"{broker}: {message}", ErrorCode.BROKER_ERROR)
        self.broker = broker
