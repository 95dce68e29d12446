"""
Agent Exception Definitions

Agent-level exceptions that don't fit in other categories.
"""

from .base import TaorBaseError


class AgentError(TaorBaseError):
    """Base exception for agent-level errors."""

    pass


class CanceledError(AgentError):
    """Raised inside the loop when the cancellation token is observed."""

    def __init__(self, message="Operation was canceled"):
        super().__init__(message)
        self.user_hint = "The request was interrupted."
