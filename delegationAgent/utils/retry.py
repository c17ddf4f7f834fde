"""Bounded exponential backoff for transient failures."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration.

    Attributes:
        max_attempts: Total attempts including the first one
        backoff_s: Delay before the second attempt
        max_backoff_s: Cap for any single delay
        multiplier: Growth factor between attempts
        jitter: Relative jitter applied to each delay (0.2 = ±20%)
    """

    max_attempts: int = 3
    backoff_s: float = 0.2
    max_backoff_s: float = 5.0
    multiplier: float = 2.0
    jitter: float = 0.2

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after the given 1-indexed failed attempt."""
        delay = min(self.backoff_s * (self.multiplier ** (attempt - 1)), self.max_backoff_s)
        if self.jitter:
            delay += delay * random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)


class RetryExhausted(Exception):
    """All attempts failed; ``last_error`` holds the final cause."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


async def retry_async(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    should_retry: Optional[Callable[[BaseException], bool]] = None,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """Run ``func`` until it succeeds or the policy is exhausted.

    Args:
        func: Zero-argument coroutine factory, called once per attempt
        policy: Retry policy
        retry_on: Exception types considered transient
        should_retry: Finer check on a caught error; False re-raises it as is
        on_retry: Called with (attempt, error) before sleeping

    Returns:
        Result of the first successful attempt

    Raises:
        RetryExhausted: When every attempt failed with a transient error
    """
    attempts = max(1, policy.max_attempts)
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except retry_on as e:
            if should_retry is not None and not should_retry(e):
                raise
            last_error = e
            if attempt >= attempts:
                break
            if on_retry:
                on_retry(attempt, e)
            delay = policy.delay_for(attempt)
            LOGGER.debug(f"Attempt {attempt}/{attempts} failed ({e}); retrying in {delay:.3f}s")
            await asyncio.sleep(delay)

    raise RetryExhausted(attempts, last_error)
