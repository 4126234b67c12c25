"""Exponential backoff for flaky async remote calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from services.openai.analysis_errors import AnalysisError, is_retryable_error

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """How often, and after which errors, an operation is retried.

    Attributes:
        max_attempts: Total calls allowed, including the first one.
        initial_delay: Seconds to wait before the first retry.
        backoff_multiplier: Factor applied to the delay after each retry.
        retry_predicate: Returns True when an error is worth retrying.
    """

    max_attempts: int = 4
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    retry_predicate: Callable[[BaseException], bool] = is_retryable_error

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1.")
        if self.initial_delay < 0 or self.backoff_multiplier < 0:
            raise ValueError("Delays must be non-negative.")

    def delay_before(self, attempt: int) -> float:
        """Return the wait before `attempt` (2-based: the first retry is attempt 2)."""
        if attempt < 2:
            return 0.0
        return self.initial_delay * self.backoff_multiplier ** (attempt - 2)


DEFAULT_RETRY_POLICY = RetryPolicy()


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await `operation()`, retrying transient failures with exponential backoff.

    Cancellation errors and errors rejected by `policy.retry_predicate`
    propagate on the first failure. Retryable errors are re-raised once the
    attempt budget is spent.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per call.
        policy: Attempt budget, delays and retry classification.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        Whatever the first successful call returns.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if isinstance(exc, AnalysisError) and exc.cancelled:
                raise
            if attempt >= policy.max_attempts or not policy.retry_predicate(exc):
                raise
            attempt += 1
            delay = policy.delay_before(attempt)
            LOGGER.warning(
                "Transient remote failure (%s); retry %d/%d in %.1fs",
                exc,
                attempt - 1,
                policy.max_attempts - 1,
                delay,
            )
            await sleep(delay)
