#!/usr/bin/env python3
"""
taor Exceptions Package

Unified exception hierarchy for the agent core.
"""

# Base exceptions
from .base import TaorBaseError

# Bus exceptions
from .bus import (
    BufferOverflowError,
    BusError,
    RequestError,
    RequestTimeoutError,
    TransportError,
)

# Context exceptions
from .context import (
    CompactionError,
    ContextError,
    TokenEstimationError,
    UnsupportedPartError,
)

# Provider exceptions
from .provider import (
    EmptyResponseError,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
)

# Tool exceptions
from .tools import (
    ToolError,
    ToolExecutionError,
    ToolInputValidationError,
    ToolNotFoundError,
)

# Config and agent exceptions
from .config import ConfigError
from .agent import AgentError, CanceledError


__all__ = [
    # Base
    "TaorBaseError",
    # Bus
    "BusError",
    "TransportError",
    "BufferOverflowError",
    "RequestError",
    "RequestTimeoutError",
    # Context
    "ContextError",
    "UnsupportedPartError",
    "CompactionError",
    "TokenEstimationError",
    # Provider
    "ProviderError",
    "ProviderConnectionError",
    "ProviderRateLimitError",
    "EmptyResponseError",
    # Tool
    "ToolError",
    "ToolExecutionError",
    "ToolInputValidationError",
    "ToolNotFoundError",
    # Config / Agent
    "ConfigError",
    "AgentError",
    "CanceledError",
]
