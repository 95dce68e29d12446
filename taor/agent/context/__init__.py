from .compaction import COMPACT_MESSAGE, Summarizer, compact
from .compression import CompressionConfig, PruneResult, is_overflow, prune
from .history import CompressResult, History, from_provider_message, to_provider_message
from .message import (
    FilePart,
    ImagePart,
    Message,
    ReasoningPart,
    TextPart,
    ToolResultPart,
    ToolUsePart,
    create_tool_result_part,
    create_user_message,
    find_incomplete_tool_uses,
    get_message_text,
)
from .usage import Usage

__all__ = [
    "COMPACT_MESSAGE",
    "CompressionConfig",
    "CompressResult",
    "FilePart",
    "History",
    "ImagePart",
    "Message",
    "PruneResult",
    "ReasoningPart",
    "Summarizer",
    "TextPart",
    "ToolResultPart",
    "ToolUsePart",
    "Usage",
    "compact",
    "create_tool_result_part",
    "create_user_message",
    "find_incomplete_tool_uses",
    "from_provider_message",
    "get_message_text",
    "is_overflow",
    "prune",
    "to_provider_message",
]
