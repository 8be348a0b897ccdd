"""Signal Context Management.

Context variables that bind the signal being processed (and a
correlation ID shared by every log line for that attempt) to log
entries, so one signal's trip through the pipeline can be followed
across the queue, the stage tracker and the broker executor.
"""

import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any


_signal_id_var: ContextVar[str] = ContextVar("signal_id", default="")
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def generate_correlation_id() -> str:
    """Generate a short correlation ID."""
    return uuid.uuid4().hex[:16]


def get_signal_id() -> str:
    return _signal_id_var.get()


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all bound context as a dictionary for log enrichment."""
    ctx: dict[str, Any] = {}
    signal_id = _signal_id_var.get()
    if signal_id:
        ctx["signal_id"] = signal_id
    corr_id = _correlation_id_var.get()
    if corr_id:
        ctx["correlation_id"] = corr_id
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


class SignalContext:
    """Context manager binding a signal ID to every log entry inside it.

    Tokens are reset on exit, so nested contexts restore the outer
    binding instead of clearing it.

    Example:
        with SignalContext(signal_id="sig_123", attempt=2):
            logger.info("enriching")  # carries signal_id, attempt
    """

    def __init__(self, signal_id: str = "", correlation_id: str = "", **extra: Any):
        self.signal_id = signal_id
        self.correlation_id = correlation_id or generate_correlation_id()
        self.extra = dict(extra)
        self.started_at = datetime.now(timezone.utc)
        self._tokens = []

    def __enter__(self) -> "SignalContext":
        self._tokens = [
            (_signal_id_var, _signal_id_var.set(self.signal_id)),
            (_correlation_id_var, _correlation_id_var.set(self.correlation_id)),
            (_extra_context_var, _extra_context_var.set(dict(self.extra))),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since the context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the active context."""
        _extra_context_var.set({**_extra_context_var.get(), **kwargs})
        self.extra.update(kwargs)
