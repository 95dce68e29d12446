#!/usr/bin/env python3
"""
Tool Exception Definitions

All tool-related exceptions inherit from TaorBaseError.
"""

from .base import TaorBaseError


class ToolError(TaorBaseError):
    """Base exception for tool-related errors."""

    pass


class ToolExecutionError(ToolError):
    """Raised when tool execution fails."""

    def __init__(self, message, tool_name=None):
        super().__init__(message)
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Raised when requested tool is not found in registry."""

    def __init__(self, message, tool_name=None):
        super().__init__(message)
        self.tool_name = tool_name


class ToolInputValidationError(ToolError):
    """Raised when tool input parameters fail validation."""

    def __init__(self, message, tool_name=None, invalid_input=None):
        super().__init__(message)
        self.tool_name = tool_name
        self.invalid_input = invalid_input
