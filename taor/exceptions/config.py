"""
Configuration Exception Definitions
"""

from .base import TaorBaseError


class ConfigError(TaorBaseError):
    """Raised when settings cannot be loaded or fail validation."""

    def __init__(self, message, field_name=None, invalid_value=None):
        super().__init__(message)
        self.field_name = field_name
        self.invalid_value = invalid_value
