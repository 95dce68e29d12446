from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .context.usage import Usage

# --- 1. Tool Lifecycle ---


@dataclass
class ToolUse:
    """One tool call as seen by the approval and result callbacks."""

    name: str
    params: Dict[str, Any]
    call_id: str


@dataclass
class ApprovalResult:
    """Outcome of an approval callback. A bare bool is accepted too."""

    approved: bool
    params: Optional[Dict[str, Any]] = None
    deny_reason: Optional[str] = None


# --- 2. Per-turn telemetry ---


@dataclass
class TurnInfo:
    usage: Usage
    start_time: datetime
    end_time: datetime


@dataclass
class StreamResult:
    """
    Reported once per stream attempt through on_stream_result.
    `error` is set for failed attempts and carries the retry bookkeeping.
    """

    request_id: str
    prompt: List[Dict[str, Any]]
    model: str
    tools: List[Dict[str, Any]]
    request_body: Any = None
    response_headers: Optional[Dict[str, str]] = None
    status_code: Optional[int] = None
    retries_attempted: int = 0
    error: Optional[Dict[str, Any]] = None


# --- 3. Loop outcome ---


class LoopErrorType(str, Enum):
    TOOL_DENIED = "tool_denied"
    MAX_TURNS_EXCEEDED = "max_turns_exceeded"
    API_ERROR = "api_error"
    CANCELED = "canceled"


@dataclass
class LoopError:
    type: LoopErrorType
    message: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class LoopResult:
    """
    Success carries `data` (text, history, usage) and `metadata`
    (turns_count, tool_calls_count, duration); failure carries `error`.
    """

    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[LoopError] = None

    @classmethod
    def ok(cls, data: Dict[str, Any], metadata: Dict[str, Any]) -> "LoopResult":
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(
        cls, error_type: LoopErrorType, message: str, **details: Any
    ) -> "LoopResult":
        return cls(success=False, error=LoopError(error_type, message, details))

    @property
    def history(self):
        if self.success:
            return self.data.get("history")
        return self.error.details.get("history")

    @property
    def usage(self) -> Optional[Usage]:
        if self.success:
            return self.data.get("usage")
        return self.error.details.get("usage")
