from .base import BaseTool, ExecutionStatus, ToolResult, ToolSchema
from .registry import ToolRegistry

__all__ = ["BaseTool", "ExecutionStatus", "ToolResult", "ToolSchema", "ToolRegistry"]
