# Test suite for the stream retry policy and cancellation token

import asyncio

import aiohttp
import pytest

from taor.agent.cancellation import CancellationToken
from taor.agent.retry import backoff_delay, cancellable_sleep, is_retryable_error, stream_retrying
from taor.exceptions import CanceledError, ProviderError


class TestBackoff:
    def test_doubles_from_base(self):
        assert [backoff_delay(n, 1.0) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_custom_base(self):
        assert backoff_delay(3, 0.5) == 2.0

    def test_zero_retry_count_uses_base(self):
        assert backoff_delay(0, 1.5) == 1.5


class TestRetryableErrors:
    def test_provider_flag_decides(self):
        assert is_retryable_error(ProviderError("rate limited", retryable=True, status_code=429))
        assert not is_retryable_error(ProviderError("bad request", status_code=400))

    def test_network_errors(self):
        assert is_retryable_error(aiohttp.ClientConnectionError("reset"))
        assert is_retryable_error(asyncio.TimeoutError())

    def test_other_errors(self):
        assert not is_retryable_error(ValueError("nope"))
        assert not is_retryable_error(CanceledError())


class TestCancellableSleep:
    @pytest.mark.asyncio
    async def test_completes_when_not_canceled(self):
        token = CancellationToken()

        await cancellable_sleep(token, 0.001)(0.005)

    @pytest.mark.asyncio
    async def test_cancel_interrupts_wait(self):
        token = CancellationToken()
        sleep = cancellable_sleep(token, 0.001)

        async def cancel_soon():
            await asyncio.sleep(0.01)
            token.cancel("stop")

        canceller = asyncio.ensure_future(cancel_soon())
        with pytest.raises(CanceledError):
            await asyncio.wait_for(sleep(30), timeout=5)
        await canceller


class TestStreamRetrying:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        token = CancellationToken()
        attempts = []

        async for attempt in stream_retrying(token, 2, base_delay=0.001, poll_interval=0.001):
            with attempt:
                attempts.append(attempt.retry_state.attempt_number)
                if len(attempts) < 3:
                    raise ProviderError("flaky", retryable=True)

        assert attempts == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_gives_up_with_last_error(self):
        token = CancellationToken()
        attempts = []

        with pytest.raises(ProviderError, match="flaky 2"):
            async for attempt in stream_retrying(token, 1, base_delay=0.001, poll_interval=0.001):
                with attempt:
                    attempts.append(1)
                    raise ProviderError(f"flaky {len(attempts)}", retryable=True)
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_is_raised_at_once(self):
        token = CancellationToken()
        attempts = []

        with pytest.raises(ValueError):
            async for attempt in stream_retrying(token, 5, base_delay=0.001):
                with attempt:
                    attempts.append(1)
                    raise ValueError("bug")
        assert len(attempts) == 1


class TestCancellationToken:
    def test_first_reason_wins(self):
        token = CancellationToken()

        token.cancel("first")
        token.cancel("second")

        assert token.canceled
        assert token.reason == "first"
        with pytest.raises(CanceledError):
            token.raise_if_canceled()

    @pytest.mark.asyncio
    async def test_wait_wakes_on_cancel(self):
        token = CancellationToken()
        waiter = asyncio.ensure_future(token.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        token.cancel()
        await asyncio.wait_for(waiter, timeout=1)

    @pytest.mark.asyncio
    async def test_wait_returns_when_already_canceled(self):
        token = CancellationToken()
        token.cancel()

        await asyncio.wait_for(token.wait(), timeout=1)
