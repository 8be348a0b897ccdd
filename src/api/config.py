"""API Configuration.

Settings for the REST API and the monitoring WebSocket.
"""

from dataclasses import dataclass, field


@dataclass
class APIConfig:
    """Core API settings."""

    title: str = "Signal Desk API"
    version: str = "1.0.0"
    description: str = "Signal pipeline monitoring and paper trading API"
    prefix: str = "/api/v1"
    docs_url: str = "/docs"
    cors_origins: list[str] = field(default_factory=lambda: [
        "http://localhost:3000",   # dashboard
        "http://localhost:8000",   # API self-reference
    ])
    cors_methods: list[str] = field(default_factory=lambda: ["GET", "POST", "PATCH", "OPTIONS"])
    cors_headers: list[str] = field(default_factory=lambda: ["*"])
    run_scheduler: bool = True


@dataclass
class WebSocketConfig:
    """Monitoring WebSocket settings."""

    heartbeat_interval: int = 30  # seconds
    subscriber_queue_size: int = 100


DEFAULT_API_CONFIG = APIConfig()
DEFAULT_WS_CONFIG = WebSocketConfig()
