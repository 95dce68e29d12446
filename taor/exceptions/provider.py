#!/usr/bin/env python3
"""
Provider Exception Classes
==========================

Errors raised while opening or consuming a completion stream.
Each one knows whether the loop may retry it.
"""

from typing import Any, Optional

from .base import TaorBaseError


class ProviderError(TaorBaseError):
    """
    Base exception for all provider-related errors.

    Carries the structured detail the loop preserves in an api_error result.
    """

    def __init__(
        self,
        message: str,
        retryable: bool = False,
        status_code: Optional[int] = None,
        response_body: Any = None,
        response_headers: Optional[dict] = None,
        url: Optional[str] = None,
        data: Any = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.retryable = retryable
        self.status_code = status_code
        self.response_body = response_body
        self.response_headers = response_headers
        self.url = url
        self.data = data

        if status_code is not None and "status_code" not in self.details:
            self.details["status_code"] = status_code


class ProviderConnectionError(ProviderError):
    """Raised for network failures; always retryable."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)
        self.user_hint = (
            "Failed to connect to the provider. "
            "Please check your internet connection and provider status."
        )


class ProviderRateLimitError(ProviderError):
    """Raised when provider rate limits are exceeded; retryable."""

    def __init__(self, message: str, retry_after: Optional[int] = None, **kwargs):
        kwargs.setdefault("retryable", True)
        super().__init__(message, **kwargs)
        if retry_after is not None:
            self.details["retry_after_seconds"] = retry_after
        self.user_hint = "Rate limit exceeded. Please wait before making additional requests."


class EmptyResponseError(ProviderError):
    """Raised when a stream finishes with neither text nor tool calls."""

    def __init__(self, message: str = "Empty response: no text or tool calls received"):
        super().__init__(message, retryable=True)
