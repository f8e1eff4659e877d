"""
screepsapi - async client for Screeps game servers.

HTTP endpoints, per-endpoint rate limit tracking and an authenticated,
auto-reconnecting socket session.
"""

from screepsapi.api import ScreepsAPI
from screepsapi.core.config import Compression, ConfigManager, ServerConfig, SocketConfig
from screepsapi.core.exceptions import (
    APIError,
    AuthenticationError,
    ConfigurationError,
    ConnectionError,
    DecodeError,
    NetworkError,
    RateLimitError,
    ReconnectExhausted,
    ScreepsAPIError,
    UnauthorizedError,
)
from screepsapi.realtime.codec import Envelope, ServerEvent
from screepsapi.realtime.socket import ConnectionState, Socket

__version__ = "1.0.0"

__all__ = [
    "ScreepsAPI",
    "Compression",
    "ConfigManager",
    "ServerConfig",
    "SocketConfig",
    "APIError",
    "AuthenticationError",
    "ConfigurationError",
    "ConnectionError",
    "DecodeError",
    "NetworkError",
    "RateLimitError",
    "ReconnectExhausted",
    "ScreepsAPIError",
    "UnauthorizedError",
    "Envelope",
    "ServerEvent",
    "ConnectionState",
    "Socket",
]
