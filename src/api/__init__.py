"""Signal Desk HTTP API.

Example:
    from src.api.app import create_app
    app = create_app()
"""

from src.api.config import APIConfig, DEFAULT_API_CONFIG, DEFAULT_WS_CONFIG, WebSocketConfig

__all__ = [
    "APIConfig",
    "WebSocketConfig",
    "DEFAULT_API_CONFIG",
    "DEFAULT_WS_CONFIG",
]
