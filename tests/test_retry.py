"""
Tests for the retry utilities.
"""

import pytest

from shared.utils.retry import (
    RetryConfig,
    calculate_delay_with_jitter,
    create_client_retry_config,
    create_http_retry_config,
    retry_async,
)

NO_JITTER = RetryConfig(initial_delay=1.0, max_delay=30.0, jitter_factor=0.0)


class TestRetryConfig:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"initial_delay": 0},
            {"initial_delay": 5.0, "max_delay": 1.0},
            {"backoff_base": 0.5},
            {"jitter_factor": 1.5},
            {"max_attempts": 0},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)

    def test_factories(self):
        assert create_client_retry_config().max_attempts == 5
        assert create_http_retry_config().max_delay == 4.0


class TestCalculateDelay:
    def test_exponential_growth(self):
        assert [calculate_delay_with_jitter(n, NO_JITTER) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self):
        assert calculate_delay_with_jitter(10, NO_JITTER) == 30.0
        assert calculate_delay_with_jitter(10_000, NO_JITTER) == 30.0

    def test_jitter_stays_in_range(self):
        config = RetryConfig(initial_delay=1.0, max_delay=30.0, jitter_factor=0.25)

        for _ in range(100):
            assert 0.75 <= calculate_delay_with_jitter(0, config) <= 1.25
            assert calculate_delay_with_jitter(20, config) <= 30.0


class TestRetryAsync:
    FAST = RetryConfig(initial_delay=0.001, max_delay=0.001, jitter_factor=0.0, max_attempts=3)

    @pytest.mark.asyncio
    async def test_returns_after_transient_failures(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "ok"

        assert await retry_async(flaky, self.FAST) == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_raises_after_budget(self):
        calls = []

        async def always_fails():
            calls.append(1)
            raise ConnectionError("reset")

        with pytest.raises(ConnectionError):
            await retry_async(always_fails, self.FAST)
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_should_retry_declines(self):
        calls = []

        async def bad_request():
            calls.append(1)
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await retry_async(bad_request, self.FAST, should_retry=lambda exc: not isinstance(exc, ValueError))
        assert len(calls) == 1
