"""Logging Configuration.

Log levels, output formats and slow-operation thresholds for the
pipeline and monitoring services.
"""

from dataclasses import dataclass
from enum import Enum


class LogLevel(str, Enum):
    """Log level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output format."""
    JSON = "json"
    CONSOLE = "console"


@dataclass
class LoggingConfig:
    """Structured logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.JSON
    include_caller: bool = True
    slow_threshold_ms: float = 1000.0
    service_name: str = "signal-desk"
    # Loggers forced to WARNING so broker polling does not flood output
    quiet_loggers: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "sqlalchemy.engine")


DEFAULT_LOGGING_CONFIG = LoggingConfig()
