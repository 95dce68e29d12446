"""
Transports carry envelopes between two MessageBus instances.

DirectTransport is the in-process pipe: two instances are paired and
deliver to each other on the next loop iteration. Envelopes sent before
a peer attaches are buffered in order and flushed on pairing.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, Optional, Tuple

from taor.exceptions.bus import BufferOverflowError, TransportError

MAX_BUFFER_SIZE = 1000

MessageCallback = Callable[[object], None]
ErrorCallback = Callable[[Exception], None]
CloseCallback = Callable[[], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    CLOSED = "closed"


class BaseTransport(ABC):
    """
    The contract a MessageBus relies on.

    Callbacks registered through on_message/on_error/on_close are plain
    callables; a transport never awaits them.
    """

    def __init__(self):
        self._message_callbacks: List[MessageCallback] = []
        self._error_callbacks: List[ErrorCallback] = []
        self._close_callbacks: List[CloseCallback] = []
        self._logger = logging.getLogger(self.__class__.__name__)

    def on_message(self, callback: MessageCallback) -> None:
        self._message_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    def on_close(self, callback: CloseCallback) -> None:
        self._close_callbacks.append(callback)

    @abstractmethod
    async def send(self, envelope) -> None:
        """Deliver one envelope to the peer, or raise TransportError."""

    @abstractmethod
    async def close(self) -> None:
        """Stop delivering in both directions."""

    @abstractmethod
    def is_connected(self) -> bool:
        """True while send() is expected to succeed."""

    # --- Dispatch helpers for subclasses ---

    def _dispatch_message(self, envelope) -> None:
        for callback in list(self._message_callbacks):
            try:
                callback(envelope)
            except Exception as e:
                self._dispatch_error(e)

    def _dispatch_error(self, error: Exception) -> None:
        if not self._error_callbacks:
            self._logger.error("Unhandled transport error: %s", error)
            return
        for callback in list(self._error_callbacks):
            try:
                callback(error)
            except Exception:
                self._logger.error("Error in transport error callback", exc_info=True)

    def _dispatch_close(self) -> None:
        for callback in list(self._close_callbacks):
            try:
                callback()
            except Exception:
                self._logger.error("Error in transport close callback", exc_info=True)


class DirectTransport(BaseTransport):
    """
    In-process transport.

    Delivery is deferred with loop.call_soon so a send never re-enters the
    receiver synchronously, and ordering across sends is preserved.
    """

    def __init__(self, max_buffer_size: int = MAX_BUFFER_SIZE):
        super().__init__()
        self._peer: Optional["DirectTransport"] = None
        self._state = ConnectionState.CONNECTED
        self._buffer: List[object] = []
        self._max_buffer_size = max_buffer_size

    @classmethod
    def create_pair(
        cls, max_buffer_size: int = MAX_BUFFER_SIZE
    ) -> Tuple["DirectTransport", "DirectTransport"]:
        first = cls(max_buffer_size)
        second = cls(max_buffer_size)
        first.set_peer(second)
        second.set_peer(first)
        return first, second

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def set_peer(self, peer: "DirectTransport") -> None:
        self._peer = peer
        self._flush_buffer()

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    async def send(self, envelope) -> None:
        if self._state == ConnectionState.CLOSED:
            raise TransportError("Transport is closed")

        if self._peer is not None and self._peer.is_connected():
            asyncio.get_running_loop().call_soon(self._peer._receive, envelope)
            return

        if len(self._buffer) >= self._max_buffer_size:
            error = BufferOverflowError(
                f"Message buffer overflow ({self._max_buffer_size} messages)",
                buffer_size=self._max_buffer_size,
            )
            self._dispatch_error(error)
            raise error

        self._buffer.append(envelope)

    async def close(self) -> None:
        if self._state == ConnectionState.CLOSED:
            return
        self._state = ConnectionState.CLOSED
        self._dispatch_close()

    def _flush_buffer(self) -> None:
        if self._peer is None or not self._peer.is_connected() or not self._buffer:
            return

        pending = list(self._buffer)
        self._buffer.clear()
        self._logger.debug("Flushing %d buffered envelopes", len(pending))

        loop = asyncio.get_running_loop()
        for envelope in pending:
            loop.call_soon(self._peer._receive, envelope)

    def _receive(self, envelope) -> None:
        if self._state != ConnectionState.CONNECTED:
            return
        self._dispatch_message(envelope)
