from enum import Enum


class Topics(str, Enum):
    """
    Canonical event topic names published by the core.
    Dot-namespaced so front ends can route by prefix.
    """

    # 1. Streaming
    TEXT_DELTA = "loop.text_delta"
    TEXT = "loop.text"
    REASONING = "loop.reasoning"
    CHUNK = "loop.chunk"
    STREAM_RESULT = "loop.stream_result"

    # 2. Turn lifecycle
    TURN = "loop.turn"
    TOOL_USE = "loop.tool_use"
    TOOL_RESULT = "loop.tool_result"
    ERROR = "loop.error"

    # 3. History
    MESSAGE = "history.message"
    COMPRESSED = "history.compressed"


class Methods(str, Enum):
    """Request method names handled across the bus."""

    TOOL_APPROVAL = "toolApproval"
    SESSION_SEND = "session.send"
    SESSION_CANCEL = "session.cancel"
