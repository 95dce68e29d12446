#!/usr/bin/env python3
"""
Base Exception Contract for taor

Provides the single source of truth for the error contract.
All domain-specific exceptions must inherit from TaorBaseError.
"""

from typing import Any, Dict, Optional


class TaorBaseError(Exception):
    """
    The Base Contract for all taor errors.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        user_hint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.user_hint = user_hint or "An internal error occurred."
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serializable view used when an error crosses the bus or lands in a result."""
        payload: Dict[str, Any] = {"message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload
