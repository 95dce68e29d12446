"""
Base classes and interfaces for the tool system.

Concrete tools (file access, shell, fetch) live outside the core; only the
contract the loop relies on is defined here.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

# Tool output sent back to the model: plain text, or a list of
# {"type": "text", "text": ...} / {"type": "image", "data": ..., "mime_type": ...}
LLMContent = Union[str, List[Dict[str, Any]]]


@dataclass
class ToolSchema:
    """Describes a tool's interface."""

    name: str
    description: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    required_params: List[str] = field(default_factory=list)

    def to_json_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {
            "type": "object",
            "properties": self.parameters,
        }
        if self.required_params:
            schema["required"] = list(self.required_params)
        return schema


class ExecutionStatus(Enum):
    """Enumeration of possible tool execution statuses."""

    SUCCESS = "success"
    INVALID_PARAMS = "invalid_params"
    NOT_FOUND = "not_found"
    DENIED = "denied"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"
    INTERNAL_ERROR = "internal_error"


class ToolResult:
    """Standardized result from tool execution."""

    def __init__(
        self,
        status_or_success: Union[ExecutionStatus, bool],
        llm_content: LLMContent,
        return_display: Any = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        if isinstance(status_or_success, bool):
            self.status = (
                ExecutionStatus.SUCCESS
                if status_or_success
                else ExecutionStatus.INTERNAL_ERROR
            )
        else:
            self.status = status_or_success

        self.llm_content = llm_content
        self.return_display = return_display
        self.metadata = metadata or {}

    @property
    def is_error(self) -> bool:
        return self.status != ExecutionStatus.SUCCESS

    @classmethod
    def success_result(cls, llm_content: LLMContent, return_display: Any = None, **metadata):
        """Create a successful execution result."""
        return cls(ExecutionStatus.SUCCESS, llm_content, return_display, metadata)

    @classmethod
    def invalid_params(cls, message: str, missing_params: Optional[list] = None):
        """Create a result for invalid parameters."""
        return cls(
            ExecutionStatus.INVALID_PARAMS, message, metadata={"missing": missing_params}
        )

    @classmethod
    def not_found(cls, tool_name: str):
        return cls(ExecutionStatus.NOT_FOUND, f"Tool {tool_name} not found")

    @classmethod
    def denied(cls, message: str):
        return cls(ExecutionStatus.DENIED, message)

    @classmethod
    def skipped(cls, message: str):
        return cls(ExecutionStatus.SKIPPED, message)

    @classmethod
    def internal_error(cls, message: str):
        """Create a result for an internal error."""
        return cls(ExecutionStatus.INTERNAL_ERROR, message)

    @classmethod
    def timeout(cls, message: str):
        """Create a result for an execution timeout."""
        return cls(ExecutionStatus.TIMEOUT, message)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "status": self.status.value,
            "llm_content": self.llm_content,
            "is_error": self.is_error,
        }
        if self.return_display is not None:
            payload["return_display"] = self.return_display
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ToolResult":
        status = data.get("status")
        if status is None:
            status = not data.get("is_error", False)
        else:
            status = ExecutionStatus(status)
        return cls(
            status,
            data.get("llm_content", ""),
            data.get("return_display"),
            data.get("metadata"),
        )

    def __repr__(self) -> str:
        return f"ToolResult(status={self.status.value!r}, llm_content={self.llm_content!r})"


class BaseTool(ABC):
    """Abstract base class for all tools."""

    # Shown to approval front ends; one of read, write, command, network, ask.
    category: str = "read"
    display_name: Optional[str] = None

    def __init__(self):
        self.logger = logging.getLogger(f"tools.{self.__class__.__name__}")

    @property
    @abstractmethod
    def schema(self) -> ToolSchema:
        """Return the tool's schema definition."""

    @abstractmethod
    def execute(self, **kwargs) -> ToolResult:
        """Execute the tool's main logic. May be a coroutine function."""

    @property
    def name(self) -> str:
        return self.schema.name

    def get_description(self, params: Dict[str, Any], cwd: str) -> Optional[str]:
        """Short human-readable summary of one call, e.g. the path being read."""
        return None

    def validate_parameters(self, params: Dict[str, Any]) -> List[str]:
        """Return the names of required parameters missing from `params`."""
        return [p for p in self.schema.required_params if p not in params]
