from .bus import MessageBus, PendingRequest
from .envelope import (
    ErrorPayload,
    EventEnvelope,
    RequestEnvelope,
    ResponseEnvelope,
    parse_envelope,
)
from .events import Methods, Topics
from .transport import MAX_BUFFER_SIZE, BaseTransport, DirectTransport

__all__ = [
    "MessageBus",
    "PendingRequest",
    "ErrorPayload",
    "EventEnvelope",
    "RequestEnvelope",
    "ResponseEnvelope",
    "parse_envelope",
    "Methods",
    "Topics",
    "MAX_BUFFER_SIZE",
    "BaseTransport",
    "DirectTransport",
]
