"""
Network transport over an aiohttp WebSocket.

One JSON envelope per text frame. The same class wraps either side:
a client connection (ClientWebSocketResponse) or a server-side
web.WebSocketResponse.
"""

import asyncio
import logging
from typing import Optional, Union

import aiohttp
from aiohttp import web
from pydantic import ValidationError

from taor.exceptions.bus import TransportError
from .envelope import parse_envelope
from .transport import BaseTransport, ConnectionState

WebSocketLike = Union[aiohttp.ClientWebSocketResponse, web.WebSocketResponse]


class WebSocketTransport(BaseTransport):
    """Carries envelopes over an already-open WebSocket."""

    def __init__(
        self,
        ws: WebSocketLike,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        super().__init__()
        self._ws = ws
        self._session = session
        self._state = ConnectionState.CONNECTED
        self._reader: Optional[asyncio.Task] = None

    @classmethod
    async def connect(cls, url: str, **kwargs) -> "WebSocketTransport":
        """Open a client connection and start reading frames."""
        session = aiohttp.ClientSession()
        try:
            ws = await session.ws_connect(url, **kwargs)
        except aiohttp.ClientError as e:
            await session.close()
            raise TransportError(
                f"Failed to connect to {url}: {e}", original_error=e
            ) from e

        transport = cls(ws, session=session)
        transport.start()
        return transport

    def start(self) -> asyncio.Task:
        if self._reader is None:
            self._reader = asyncio.ensure_future(self.run())
        return self._reader

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and not self._ws.closed

    async def send(self, envelope) -> None:
        if not self.is_connected():
            raise TransportError("WebSocket is not connected")
        try:
            await self._ws.send_str(envelope.model_dump_json())
        except (ConnectionResetError, RuntimeError) as e:
            self._state = ConnectionState.ERROR
            error = TransportError(f"WebSocket send failed: {e}", original_error=e)
            self._dispatch_error(error)
            raise error from e

    async def run(self) -> None:
        """Read frames until the socket closes."""
        try:
            async for frame in self._ws:
                if frame.type == aiohttp.WSMsgType.TEXT:
                    self._handle_frame(frame.data)
                elif frame.type == aiohttp.WSMsgType.ERROR:
                    self._state = ConnectionState.ERROR
                    self._dispatch_error(
                        TransportError(f"WebSocket error: {self._ws.exception()}")
                    )
                    break
        finally:
            self._mark_closed()
            await self._close_session()

    def _handle_frame(self, data: str) -> None:
        try:
            envelope = parse_envelope(data)
        except ValidationError as e:
            self._logger.warning("Dropping malformed frame: %s", e)
            self._dispatch_error(
                TransportError("Invalid message format", original_error=e)
            )
            return
        self._dispatch_message(envelope)

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()
        self._mark_closed()
        if (
            self._reader is not None
            and not self._reader.done()
            and self._reader is not asyncio.current_task()
        ):
            self._reader.cancel()
        await self._close_session()

    def _mark_closed(self) -> None:
        # No await before dispatch: listeners fire exactly once.
        if self._state == ConnectionState.CLOSED:
            return
        self._state = ConnectionState.CLOSED
        self._dispatch_close()

    async def _close_session(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


async def serve_websocket(request: web.Request, bus) -> web.WebSocketResponse:
    """
    aiohttp handler body: attach `bus` to an incoming WebSocket and
    serve it until the client disconnects.
    """
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    transport = WebSocketTransport(ws)
    bus.set_transport(transport)
    await transport.run()
    return ws
