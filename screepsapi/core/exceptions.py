"""
Exception Hierarchy for screepsapi

Structured exceptions shared by the HTTP transport, the socket session
and the configuration layer.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ScreepsAPIError(Exception):
    """
    Base exception for all screepsapi errors.

    All custom exceptions should inherit from this class.
    """

    error_code: str = "SCREEPS_ERROR"

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        """
        Initialize error.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            details: Additional context/details
            cause: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.error_code
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.details:
            parts.append(f" Details: {self.details}")
        if self.cause:
            parts.append(f" Caused by: {self.cause}")
        return "".join(parts)


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(ScreepsAPIError):
    """Configuration file or value is missing or invalid."""

    error_code = "CONFIG_ERROR"


# =============================================================================
# Network/Socket Errors
# =============================================================================


class NetworkError(ScreepsAPIError):
    """Base class for network-related errors."""

    error_code = "NETWORK_ERROR"


class ConnectionError(NetworkError):
    """Transport failed to open or closed before authentication."""

    error_code = "SOCKET_CONNECTION"


class ReconnectExhausted(ConnectionError):
    """Reconnect loop gave up after its retry budget."""

    error_code = "SOCKET_RECONNECT_EXHAUSTED"

    def __init__(self, message: str, *, attempts: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.attempts = attempts
        self.details["attempts"] = attempts


class AuthenticationError(ScreepsAPIError):
    """Credentials or token were rejected."""

    error_code = "AUTH_FAILED"


class DecodeError(ScreepsAPIError):
    """Inbound frame could not be decompressed or parsed."""

    error_code = "DECODE_ERROR"

    def __init__(self, message: str, *, frame: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.frame = frame
        if frame is not None:
            self.details["frame"] = frame[:100]


# =============================================================================
# HTTP Errors
# =============================================================================


class APIError(ScreepsAPIError):
    """Server returned an error response."""

    error_code = "API_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        **kwargs,
    ):
        super().__init__(message, **kwargs)
        self.status_code = status_code
        self.response_body = response_body
        if status_code:
            self.details["status_code"] = status_code


class UnauthorizedError(APIError):
    """Server answered 401; the token is invalid or expired."""

    error_code = "API_UNAUTHORIZED"


class RateLimitError(APIError):
    """Rate limit exceeded for an endpoint."""

    error_code = "API_RATE_LIMIT"

    def __init__(
        self,
        message: str,
        *,
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 429)
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        if retry_after:
            self.details["retry_after_seconds"] = retry_after


# =============================================================================
# Helper Functions
# =============================================================================


def wrap_exception(
    exception: BaseException,
    wrapper_class: type = ScreepsAPIError,
    message: Optional[str] = None,
) -> ScreepsAPIError:
    """
    Wrap a standard exception in a screepsapi exception.

    Args:
        exception: The original exception
        wrapper_class: Exception class to use
        message: Optional custom message

    Returns:
        Wrapped ScreepsAPIError
    """
    if isinstance(exception, ScreepsAPIError):
        return exception

    return wrapper_class(
        message=message or str(exception),
        cause=exception,
    )
