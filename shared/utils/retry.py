"""
Exponential backoff with jitter.

Two users:
- the client connection manager, which reconnects forever and only reports
  the attempt budget
- the HTTP fallback for status actions, which gives up after the budget
  (retry_async)
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Final, TypeVar

from shared.config.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# backoff_base ** attempt overflows a float long before this
MAX_EXPONENT: Final[int] = 64


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """
    Backoff parameters.

    delay(n) = min(initial_delay * backoff_base ** n, max_delay), then
    scattered by ±jitter_factor and clamped to [0, max_delay].
    """

    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_base: float = 2.0
    jitter_factor: float = 0.25
    max_attempts: int = 10

    def __post_init__(self) -> None:
        problems = []
        if self.initial_delay <= 0:
            problems.append("initial_delay must be positive")
        if self.max_delay < self.initial_delay:
            problems.append("max_delay must be >= initial_delay")
        if self.backoff_base < 1:
            problems.append("backoff_base must be >= 1")
        if not 0 <= self.jitter_factor <= 1:
            problems.append("jitter_factor must be between 0 and 1")
        if self.max_attempts < 1:
            problems.append("max_attempts must be >= 1")
        if problems:
            raise ValueError("; ".join(problems))


def calculate_delay_with_jitter(attempt: int, config: RetryConfig | None = None) -> float:
    """
    Delay in seconds before retry number `attempt` (0-indexed).

    >>> calculate_delay_with_jitter(3, RetryConfig(jitter_factor=0))
    8.0
    """
    config = config or RetryConfig()
    nominal = min(
        config.initial_delay * config.backoff_base ** min(attempt, MAX_EXPONENT),
        config.max_delay,
    )
    spread = nominal * config.jitter_factor
    return min(config.max_delay, max(0.0, nominal + random.uniform(-spread, spread)))


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    should_retry: Callable[[BaseException], bool] = lambda exc: True,
) -> T:
    """
    Await fn() until it succeeds, sleeping with backoff between failures.

    The last error is re-raised when should_retry() declines it or after
    config.max_attempts calls.
    """
    config = config or RetryConfig()
    for attempt in range(1, config.max_attempts + 1):
        try:
            return await fn()
        except Exception as exc:
            if attempt == config.max_attempts or not should_retry(exc):
                raise
            delay = calculate_delay_with_jitter(attempt - 1, config)
            logger.debug("Retrying after error", attempt=attempt, delay=round(delay, 2), error=str(exc))
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")


def create_client_retry_config(
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    max_attempts: int = 5,
) -> RetryConfig:
    """Reconnect backoff: 1s doubling to 30s; the budget is only reported."""
    return RetryConfig(initial_delay=initial_delay, max_delay=max_delay, max_attempts=max_attempts)


def create_http_retry_config(max_attempts: int = 3) -> RetryConfig:
    """Short backoff for fallback HTTP requests."""
    return RetryConfig(initial_delay=0.5, max_delay=4.0, jitter_factor=0.2, max_attempts=max_attempts)
