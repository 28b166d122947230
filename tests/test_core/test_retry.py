"""
Tests for Retry Module

Tests for flowstudio/core/retry.py
"""

import pytest
from unittest.mock import AsyncMock, patch

from flowstudio.core.exceptions import ConflictError
from flowstudio.core.retry import (
    RetryConfig,
    async_retry,
    calculate_delay,
    retry_async_call,
)


NO_WAIT = RetryConfig(max_retries=2, base_delay=0.0, max_delay=0.0, jitter=False)


class TestCalculateDelay:
    """Tests for backoff calculation."""

    def test_exponential_growth(self):
        config = RetryConfig(base_delay=1.0, exponential_base=2.0, jitter=False)

        assert calculate_delay(0, config) == 1.0
        assert calculate_delay(1, config) == 2.0
        assert calculate_delay(2, config) == 4.0

    def test_capped_at_max_delay(self):
        config = RetryConfig(base_delay=1.0, max_delay=3.0, jitter=False)

        assert calculate_delay(5, config) == 3.0

    def test_jitter_within_range(self):
        config = RetryConfig(base_delay=1.0, jitter=True, jitter_range=(0.5, 1.5))

        for _ in range(20):
            assert 0.5 <= calculate_delay(0, config) <= 1.5


class TestRetryAsyncCall:
    """Tests for retry_async_call."""

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self):
        func = AsyncMock(side_effect=[ConflictError("p", 1), ConflictError("p", 1), "ok"])

        result = await retry_async_call(func, config=NO_WAIT)

        assert result == "ok"
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_raises_last_error_when_exhausted(self):
        func = AsyncMock(side_effect=ConflictError("p", 2))

        with pytest.raises(ConflictError):
            await retry_async_call(func, config=NO_WAIT)

        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self):
        config = RetryConfig(max_retries=3, base_delay=0.0, jitter=False, retryable_exceptions=(ConflictError,))
        func = AsyncMock(side_effect=ValueError("bad"))

        with pytest.raises(ValueError):
            await retry_async_call(func, config=config)

        assert func.await_count == 1

    @pytest.mark.asyncio
    async def test_on_retry_callback(self):
        func = AsyncMock(side_effect=[ConflictError("p", 1), "ok"])
        seen = []

        await retry_async_call(func, config=NO_WAIT, on_retry=lambda e, attempt: seen.append(attempt))

        assert seen == [0]

    @pytest.mark.asyncio
    async def test_sleeps_between_attempts(self):
        config = RetryConfig(max_retries=1, base_delay=2.0, jitter=False)
        func = AsyncMock(side_effect=[ConflictError("p", 1), "ok"])

        with patch("flowstudio.core.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            await retry_async_call(func, config=config)

        sleep.assert_awaited_once_with(2.0)


class TestAsyncRetryDecorator:
    """Tests for the async_retry decorator."""

    @pytest.mark.asyncio
    async def test_decorated_function_retries(self):
        calls = []

        @async_retry(NO_WAIT)
        async def flaky(value):
            calls.append(value)
            if len(calls) < 2:
                raise ConflictError("p", 1)
            return value * 2

        assert await flaky(21) == 42
        assert calls == [21, 21]
