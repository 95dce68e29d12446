#!/usr/bin/env python3
"""
Context Exception Definitions

All history and compression errors inherit from ContextError.
"""

from typing import Optional

from .base import TaorBaseError


class ContextError(TaorBaseError):
    """Base exception for history and context management errors."""

    pass


class UnsupportedPartError(ContextError):
    """Raised when a content part cannot be converted to provider format."""

    def __init__(self, part_type: str, role: str):
        super().__init__(f"Not implemented with type: {part_type} of role: {role}")
        self.part_type = part_type
        self.role = role


class CompactionError(ContextError):
    """Raised when summarization fails or yields an empty summary."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message, original_error=original_error)
        self.user_hint = "History could not be summarized; the conversation was left untouched."


class TokenEstimationError(ContextError):
    """Raised when token estimation fails due to estimator issues."""

    def __init__(
        self,
        message: str,
        estimator_name: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, original_error=original_error)
        self.estimator_name = estimator_name
