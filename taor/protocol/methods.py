"""
Typed bindings for bus methods.

METHOD_TYPES maps a method name to its (params model, result model) pair.
MessageBus.call() validates both sides against these; MessageBus.request()
stays untyped for plugin-defined methods.
"""

from typing import Any, Dict, Optional, Tuple, Type

from pydantic import BaseModel, Field

from .events import Methods


class ToolUseModel(BaseModel):
    name: str
    params: Dict[str, Any] = Field(default_factory=dict)
    call_id: str


class ToolApprovalParams(BaseModel):
    tool_use: ToolUseModel
    category: Optional[str] = None


class ToolApprovalResponse(BaseModel):
    approved: bool
    params: Optional[Dict[str, Any]] = None
    deny_reason: Optional[str] = None


class SessionSendParams(BaseModel):
    session_id: Optional[str] = None
    message: str
    parent_id: Optional[str] = None


class SessionSendResponse(BaseModel):
    success: bool
    text: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    turns_count: int = 0
    tool_calls_count: int = 0


class SessionCancelParams(BaseModel):
    session_id: Optional[str] = None


class SessionCancelResponse(BaseModel):
    canceled: bool


METHOD_TYPES: Dict[str, Tuple[Type[BaseModel], Type[BaseModel]]] = {
    Methods.TOOL_APPROVAL.value: (ToolApprovalParams, ToolApprovalResponse),
    Methods.SESSION_SEND.value: (SessionSendParams, SessionSendResponse),
    Methods.SESSION_CANCEL.value: (SessionCancelParams, SessionCancelResponse),
}
