"""Structured Logging & Signal Tracing.

Structured JSON logging, signal-scoped context binding and
performance timing for the pipeline and monitoring services.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import SignalContext, generate_correlation_id, get_signal_id
from src.logging_config.performance import PerformanceTimer, log_performance
from src.logging_config.setup import configure_logging, get_logger

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "PerformanceTimer",
    "SignalContext",
    "configure_logging",
    "generate_correlation_id",
    "get_logger",
    "get_signal_id",
    "log_performance",
]
