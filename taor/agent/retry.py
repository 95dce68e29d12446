"""
Retry policy for opening and consuming completion streams.
"""

import asyncio
import time
from typing import Awaitable, Callable

import aiohttp
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from taor.exceptions import CanceledError, ProviderError
from .cancellation import CancellationToken

DEFAULT_BASE_DELAY = 1.0
DEFAULT_POLL_INTERVAL = 0.1


def is_retryable_error(error: BaseException) -> bool:
    """
    Retry on:
    - ProviderError flagged retryable (connection drops, rate limits, empty turns)
    - aiohttp.ClientError: For HTTP client errors
    - asyncio.TimeoutError: For general timeouts
    """
    if isinstance(error, ProviderError):
        return error.retryable
    return isinstance(error, (aiohttp.ClientError, asyncio.TimeoutError))


def backoff_delay(retry_count: int, base_delay: float = DEFAULT_BASE_DELAY) -> float:
    """Delay before retry number `retry_count` (1-based): base, 2*base, 4*base, ..."""
    return base_delay * (2 ** max(0, retry_count - 1))


def cancellable_sleep(
    token: CancellationToken, poll_interval: float = DEFAULT_POLL_INTERVAL
) -> Callable[[float], Awaitable[None]]:
    """
    A tenacity sleep that checks the token every `poll_interval` seconds.

    Raises:
        CanceledError: The token was set before the delay elapsed.
    """

    async def _sleep(seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while True:
            token.raise_if_canceled()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            await asyncio.sleep(min(poll_interval, remaining))

    return _sleep


def stream_retrying(
    token: CancellationToken,
    max_retries: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> AsyncRetrying:
    """
    Up to `max_retries` retries after the first attempt, exponential backoff,
    and a wait that gives up as soon as the run is canceled.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, exp_base=2),
        retry=retry_if_exception(is_retryable_error),
        sleep=cancellable_sleep(token, poll_interval),
        reraise=True,
    )
