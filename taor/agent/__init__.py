"""
The think-act-observe-repeat core.

AgentSession lives in taor.agent.session; it depends on taor.config, which
itself builds on this package.
"""

from .approval import make_bus_approval
from .cancellation import CancellationToken
from .loop import (
    DEFAULT_ERROR_RETRY_TURNS,
    DEFAULT_MAX_TURNS,
    run_loop,
)
from .mentions import expand_prompt_mentions, parse_mentions
from .query import query, summarize_history
from .structs import (
    ApprovalResult,
    LoopError,
    LoopErrorType,
    LoopResult,
    StreamResult,
    ToolUse,
    TurnInfo,
)

__all__ = [
    "make_bus_approval",
    "CancellationToken",
    "DEFAULT_ERROR_RETRY_TURNS",
    "DEFAULT_MAX_TURNS",
    "run_loop",
    "expand_prompt_mentions",
    "parse_mentions",
    "query",
    "summarize_history",
    "ApprovalResult",
    "LoopError",
    "LoopErrorType",
    "LoopResult",
    "StreamResult",
    "ToolUse",
    "TurnInfo",
]
