"""Error Configuration.

Error codes, HTTP status mapping and log severity for the pipeline
and monitoring error taxonomy.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict


class ErrorCode(Enum):
    """Standardized error codes carried by every raised service error."""

    # 400
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # 404
    NOT_FOUND = "NOT_FOUND"

    # 409
    CONFLICT_ERROR = "CONFLICT_ERROR"
    INVALID_STATE = "INVALID_STATE"

    # 500
    COLLECTION_ERROR = "COLLECTION_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # 502 / 503
    BROKER_ERROR = "BROKER_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorSeverity(Enum):
    """Severity levels for error logging."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ERROR_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT_ERROR: 409,
    ErrorCode.INVALID_STATE: 409,
    ErrorCode.COLLECTION_ERROR: 500,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.BROKER_ERROR: 502,
    ErrorCode.SERVICE_UNAVAILABLE: 503,
}

ERROR_SEVERITY_MAP: Dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.VALIDATION_ERROR: ErrorSeverity.LOW,
    ErrorCode.NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.CONFLICT_ERROR: ErrorSeverity.MEDIUM,
    ErrorCode.INVALID_STATE: ErrorSeverity.MEDIUM,
    ErrorCode.COLLECTION_ERROR: ErrorSeverity.HIGH,
    ErrorCode.DATABASE_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.INTERNAL_ERROR: ErrorSeverity.CRITICAL,
    ErrorCode.BROKER_ERROR: ErrorSeverity.HIGH,
    ErrorCode.SERVICE_UNAVAILABLE: ErrorSeverity.HIGH,
}


@dataclass
class ErrorConfig:
    """Configuration for HTTP error rendering."""

    include_correlation_id: bool = True
    log_all_errors: bool = True
    suppress_internal_details: bool = True


DEFAULT_ERROR_CONFIG = ErrorConfig()
