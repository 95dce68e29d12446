"""
Wire envelopes for the message bus.

Every frame on a transport is exactly one of Request, Response or Event.
Ids correlate a Response to its Request; Events are uncorrelated.
"""

import time
import uuid
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


def new_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    return int(time.time() * 1000)


class ErrorPayload(BaseModel):
    """Structured error carried by a failed response."""

    message: str
    code: str
    details: Optional[Any] = None


class _BaseEnvelope(BaseModel):
    id: str = Field(default_factory=new_id)
    timestamp: int = Field(default_factory=now_ms)


class RequestEnvelope(_BaseEnvelope):
    type: Literal["request"] = "request"
    method: str
    params: Any = None


class ResponseEnvelope(_BaseEnvelope):
    type: Literal["response"] = "response"
    result: Any = None
    error: Optional[ErrorPayload] = None


class EventEnvelope(_BaseEnvelope):
    type: Literal["event"] = "event"
    topic: str
    data: Any = None


Envelope = Annotated[
    Union[RequestEnvelope, ResponseEnvelope, EventEnvelope],
    Field(discriminator="type"),
]

_ENVELOPE_ADAPTER: TypeAdapter = TypeAdapter(Envelope)


def parse_envelope(raw: Union[str, bytes, Dict[str, Any]]):
    """
    Validate a decoded frame into an envelope.

    Raises pydantic.ValidationError for frames missing id, timestamp or type.
    """
    if isinstance(raw, (str, bytes)):
        return _ENVELOPE_ADAPTER.validate_json(raw)
    return _ENVELOPE_ADAPTER.validate_python(raw)


def create_request(method: str, params: Any = None) -> RequestEnvelope:
    return RequestEnvelope(method=method, params=params)


def create_response(request_id: str, result: Any = None) -> ResponseEnvelope:
    return ResponseEnvelope(id=request_id, result=result)


def create_error_response(
    request_id: str, message: str, code: str, details: Any = None
) -> ResponseEnvelope:
    return ResponseEnvelope(
        id=request_id,
        error=ErrorPayload(message=message, code=code, details=details),
    )


def create_event(topic: str, data: Any = None) -> EventEnvelope:
    return EventEnvelope(topic=topic, data=data)
