"""
Message Bus Exception Definitions

Every failure a caller of MessageBus.request() can observe is one of these.
"""

from typing import Any, Dict, Optional

from .base import TaorBaseError

METHOD_NOT_FOUND = "METHOD_NOT_FOUND"
HANDLER_ERROR = "HANDLER_ERROR"
TIMEOUT = "TIMEOUT"
NOT_CONNECTED = "NOT_CONNECTED"
NO_TRANSPORT = "NO_TRANSPORT"


class BusError(TaorBaseError):
    """Base exception for the request/response and event distribution system."""

    pass


class TransportError(BusError):
    """Raised when a transport cannot deliver an envelope."""

    def __init__(self, message: str, code: str = NOT_CONNECTED, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code


class BufferOverflowError(TransportError):
    """Raised when an unpaired in-process transport exceeds its buffer bound."""

    def __init__(self, message: str, buffer_size: Optional[int] = None):
        super().__init__(message, code="BUFFER_OVERFLOW")
        self.buffer_size = buffer_size
        self.user_hint = "The peer never attached; too many messages were queued."


class RequestError(BusError):
    """
    Structured failure of a correlated request.

    Mirrors the error object carried inside a response envelope:
    message, machine code and optional detail.
    """

    def __init__(
        self,
        message: str,
        code: str = HANDLER_ERROR,
        method: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.code = code
        self.method = method

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["code"] = self.code
        return payload


class RequestTimeoutError(RequestError):
    """Raised when no response arrives within the request timeout."""

    def __init__(self, method: str, timeout: float):
        super().__init__(
            f"Request timeout after {timeout}s: {method}",
            code=TIMEOUT,
            method=method,
            details={"timeout_seconds": timeout},
        )
        self.timeout = timeout
