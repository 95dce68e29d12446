"""
Provider contract.

Concrete HTTP clients live outside the core. A provider opens one
streaming completion per call and yields typed stream events; it raises
ProviderError (with `retryable` set) for failures it can classify.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Union


@dataclass
class ModelInfo:
    """Identity and limits of the model a provider serves."""

    provider_id: str
    model_id: str
    context_limit: int = 0  # 0 = unknown
    output_limit: int = 0
    # Reasoning-effort name -> provider options, e.g. {"high": {"reasoning_effort": "high"}}
    variants: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def full_id(self) -> str:
        return f"{self.provider_id}/{self.model_id}"


# --- Stream events ---


@dataclass
class TextDelta:
    delta: str
    type: str = field(default="text-delta", init=False)


@dataclass
class ReasoningDelta:
    delta: str
    type: str = field(default="reasoning-delta", init=False)


@dataclass
class ReasoningEnd:
    provider_metadata: Optional[Dict[str, Any]] = None
    type: str = field(default="reasoning-end", init=False)


@dataclass
class ToolCall:
    tool_call_id: str
    tool_name: str
    input: Any  # JSON text as written by the model; may be empty or malformed
    provider_metadata: Optional[Dict[str, Any]] = None
    type: str = field(default="tool-call", init=False)


@dataclass
class Finish:
    usage: Any = None
    finish_reason: Optional[str] = None
    type: str = field(default="finish", init=False)


@dataclass
class StreamError:
    """An error reported in-band by the stream; never retried."""

    error: Any
    status_code: Optional[int] = None
    type: str = field(default="error", init=False)


StreamEvent = Union[TextDelta, ReasoningDelta, ReasoningEnd, ToolCall, Finish, StreamError]


@dataclass
class StreamRequest:
    request_id: str
    prompt: List[Dict[str, Any]]
    tools: List[Dict[str, Any]]
    cancellation: Any = None
    tool_choice: Dict[str, Any] = field(default_factory=lambda: {"type": "auto"})
    response_format: Optional[Dict[str, Any]] = None
    provider_options: Optional[Dict[str, Any]] = None
    temperature: Optional[float] = None


@dataclass
class StreamResponse:
    events: AsyncIterator[Any]
    request_body: Any = None
    response_headers: Optional[Dict[str, str]] = None
    status_code: Optional[int] = None


class BaseProvider(ABC):
    """
    The Abstract Base Class (Contract) for all LLM Providers.
    """

    def __init__(self, model: ModelInfo):
        self.model = model

    @abstractmethod
    async def create_stream(self, request: StreamRequest) -> StreamResponse:
        """
        Open a streaming completion.

        Raises:
            ProviderError: The request could not be started.
        """
