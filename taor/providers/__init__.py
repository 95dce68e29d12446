from .base import (
    BaseProvider,
    Finish,
    ModelInfo,
    ReasoningDelta,
    ReasoningEnd,
    StreamError,
    StreamEvent,
    StreamRequest,
    StreamResponse,
    TextDelta,
    ToolCall,
)

__all__ = [
    "BaseProvider",
    "Finish",
    "ModelInfo",
    "ReasoningDelta",
    "ReasoningEnd",
    "StreamError",
    "StreamEvent",
    "StreamRequest",
    "StreamResponse",
    "TextDelta",
    "ToolCall",
]
