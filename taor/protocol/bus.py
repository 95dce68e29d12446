import asyncio
import inspect
import logging
import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ValidationError

from taor.exceptions.base import TaorBaseError
from taor.exceptions.bus import (
    HANDLER_ERROR,
    METHOD_NOT_FOUND,
    NO_TRANSPORT,
    NOT_CONNECTED,
    RequestError,
    RequestTimeoutError,
)
from .envelope import (
    EventEnvelope,
    RequestEnvelope,
    ResponseEnvelope,
    create_error_response,
    create_event,
    create_request,
    create_response,
    parse_envelope,
)
from .methods import METHOD_TYPES
from .transport import BaseTransport

# Handlers may be plain functions or coroutines.
MessageHandler = Callable[[Any], Union[Any, Awaitable[Any]]]
EventHandler = Callable[[Any], Union[None, Awaitable[None]]]
ErrorListener = Callable[[str, Exception, Any], None]


def _name(value: Any) -> str:
    """Enum members (Topics, Methods) travel as their plain string value."""
    return value.value if isinstance(value, Enum) else str(value)


@dataclass
class PendingRequest:
    """Bookkeeping for one outstanding request; lives only until settled."""

    id: str
    method: str
    future: asyncio.Future
    timestamp: float = field(default_factory=time.time)
    timer: Optional[asyncio.TimerHandle] = None

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class MessageBus:
    """
    Duplex request/response plus publish/subscribe over one transport.

    Design Philosophy:
    - One handler per method (last registration wins).
    - Many subscribers per topic; handlers run sequentially over a snapshot
      of the subscriber list, and one failing subscriber never blocks the rest.
    - Handler errors never crash the bus; they become an error response
      scoped to the one request that triggered them.
    """

    def __init__(self, name: str = "MessageBus"):
        self._transport: Optional[BaseTransport] = None
        self._handlers: Dict[str, MessageHandler] = {}
        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._pending: Dict[str, PendingRequest] = {}
        self._error_listeners: List[ErrorListener] = []
        self._tasks: set = set()
        self._logger = logging.getLogger(name)

    # --- Transport wiring ---

    def set_transport(self, transport: BaseTransport) -> None:
        self._transport = transport
        transport.on_message(self._on_transport_message)
        transport.on_error(lambda error: self._report_error("transport", error, None))
        transport.on_close(self._on_transport_close)

    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_connected()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def on_error(self, listener: ErrorListener) -> None:
        """
        Register a listener for bus-level failures.

        kind is one of "transport", "message", "event_handler".
        """
        self._error_listeners.append(listener)

    async def close(self) -> None:
        self._reject_all_pending("Message bus closed")
        if self._transport is not None:
            await self._transport.close()

    # --- Requests ---

    async def request(
        self, method: str, params: Any = None, timeout: Optional[float] = None
    ) -> Any:
        """
        Send a correlated request and wait for the remote handler's result.

        Raises:
            RequestError: handler error, missing handler or disconnected transport.
            RequestTimeoutError: no response within `timeout` seconds.
        """
        method = _name(method)
        if self._transport is None:
            raise RequestError("No transport available", code=NO_TRANSPORT, method=method)
        if not self._transport.is_connected():
            raise RequestError(
                "Transport is not connected", code=NOT_CONNECTED, method=method
            )

        if isinstance(params, BaseModel):
            params = params.model_dump(mode="json")

        envelope = create_request(method, params)
        loop = asyncio.get_running_loop()
        pending = PendingRequest(id=envelope.id, method=method, future=loop.create_future())
        if timeout:
            pending.timer = loop.call_later(timeout, self._expire, envelope.id, timeout)
        self._pending[envelope.id] = pending

        try:
            await self._transport.send(envelope)
            return await pending.future
        finally:
            # Covers send failures and cancellation of the awaiting task.
            leftover = self._pending.pop(envelope.id, None)
            if leftover is not None:
                leftover.cancel_timer()

    async def call(self, method: str, params: Any = None, timeout: Optional[float] = None):
        """
        Typed request for methods listed in METHOD_TYPES.

        Params are validated against the method's request model before sending,
        and the result is validated into its response model.
        """
        method = _name(method)
        if method not in METHOD_TYPES:
            raise RequestError(
                f"No typed binding for method: {method}", code=METHOD_NOT_FOUND, method=method
            )
        request_model, response_model = METHOD_TYPES[method]
        if not isinstance(params, request_model):
            params = request_model.model_validate(params or {})
        result = await self.request(method, params, timeout=timeout)
        return response_model.model_validate(result)

    def register_handler(self, method: str, handler: MessageHandler) -> None:
        method = _name(method)
        if method in self._handlers:
            self._logger.debug("Replacing handler for %s", method)
        self._handlers[method] = handler

    def unregister_handler(self, method: str) -> None:
        self._handlers.pop(_name(method), None)

    # --- Events ---

    async def emit_event(self, topic: str, data: Any = None) -> None:
        """Publish to the peer's subscribers. A no-op while disconnected."""
        if not self.is_connected():
            return
        if isinstance(data, BaseModel):
            data = data.model_dump(mode="json")
        await self._transport.send(create_event(_name(topic), data))

    def on_event(self, topic: str, handler: EventHandler) -> None:
        self._subscribers.setdefault(_name(topic), []).append(handler)

    def off_event(self, topic: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(_name(topic))
        if not handlers:
            return
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self._subscribers[_name(topic)]

    # --- Incoming ---

    def _on_transport_message(self, raw: Any) -> None:
        task = asyncio.ensure_future(self._handle_incoming(raw))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_transport_close(self) -> None:
        self._reject_all_pending("Transport closed")

    async def _handle_incoming(self, raw: Any) -> None:
        try:
            envelope = raw if isinstance(raw, BaseModel) else parse_envelope(raw)
        except ValidationError as e:
            self._report_error("message", e, raw)
            return

        try:
            if isinstance(envelope, RequestEnvelope):
                await self._handle_request(envelope)
            elif isinstance(envelope, ResponseEnvelope):
                self._handle_response(envelope)
            elif isinstance(envelope, EventEnvelope):
                await self._handle_event(envelope)
        except Exception as e:
            self._report_error("message", e, envelope)

    async def _handle_request(self, envelope: RequestEnvelope) -> None:
        handler = self._handlers.get(envelope.method)
        if handler is None:
            await self._send_response(
                create_error_response(
                    envelope.id,
                    f"No handler registered for method: {envelope.method}",
                    METHOD_NOT_FOUND,
                )
            )
            return

        try:
            params = envelope.params
            if envelope.method in METHOD_TYPES and isinstance(params, dict):
                params = METHOD_TYPES[envelope.method][0].model_validate(params)
            result = handler(params)
            if inspect.isawaitable(result):
                result = await result
            if isinstance(result, BaseModel):
                result = result.model_dump(mode="json")
            response = create_response(envelope.id, result)
        except Exception as e:
            self._logger.warning("Handler for %s failed: %s", envelope.method, e)
            response = create_error_response(
                envelope.id, str(e), HANDLER_ERROR, self._error_details(e)
            )
        await self._send_response(response)

    def _handle_response(self, envelope: ResponseEnvelope) -> None:
        pending = self._pending.pop(envelope.id, None)
        if pending is None:
            # Late or duplicate delivery; nobody is waiting.
            self._logger.debug("Dropping response with unknown id %s", envelope.id)
            return

        pending.cancel_timer()
        if pending.future.done():
            return

        if envelope.error is not None:
            pending.future.set_exception(
                RequestError(
                    envelope.error.message,
                    code=envelope.error.code,
                    method=pending.method,
                    details=envelope.error.details,
                )
            )
        else:
            pending.future.set_result(envelope.result)

    async def _handle_event(self, envelope: EventEnvelope) -> None:
        handlers_snapshot = list(self._subscribers.get(envelope.topic, []))
        for handler in handlers_snapshot:
            try:
                result = handler(envelope.data)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                # Fail-soft: keep delivering to the remaining subscribers
                self._logger.error(
                    "Error in handler for %s: %s", envelope.topic, e, exc_info=True
                )
                self._report_error("event_handler", e, envelope)

    async def _send_response(self, response: ResponseEnvelope) -> None:
        if self._transport is None:
            return
        await self._transport.send(response)

    # --- Internals ---

    def _expire(self, request_id: str, timeout: float) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None or pending.future.done():
            return
        pending.future.set_exception(RequestTimeoutError(pending.method, timeout))

    def _reject_all_pending(self, reason: str) -> None:
        for request_id in list(self._pending):
            pending = self._pending.pop(request_id)
            pending.cancel_timer()
            if not pending.future.done():
                pending.future.set_exception(
                    RequestError(reason, code=NOT_CONNECTED, method=pending.method)
                )

    def _report_error(self, kind: str, error: Exception, context: Any) -> None:
        if not self._error_listeners:
            self._logger.error("Bus %s error: %s", kind, error)
            return
        for listener in list(self._error_listeners):
            try:
                listener(kind, error, context)
            except Exception:
                self._logger.error("Error in bus error listener", exc_info=True)

    @staticmethod
    def _error_details(error: Exception) -> Dict[str, Any]:
        details: Dict[str, Any] = {
            "type": error.__class__.__name__,
            "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }
        if isinstance(error, TaorBaseError) and error.details:
            details["details"] = error.details
        return details
