# Core library
from screepsapi.core.config import (
    Compression,
    ConfigManager,
    ServerConfig,
    SocketConfig,
    socket_url_for,
)
from screepsapi.core.events import EventEmitter
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
    wrap_exception,
)
from screepsapi.core.structured_logging import (
    JSONFormatter,
    configure_logging,
    generate_trace_id,
    get_trace_id,
)

__all__ = [
    "Compression",
    "ConfigManager",
    "ServerConfig",
    "SocketConfig",
    "socket_url_for",
    "EventEmitter",
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
    "wrap_exception",
    "JSONFormatter",
    "configure_logging",
    "generate_trace_id",
    "get_trace_id",
]
