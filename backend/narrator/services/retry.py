"""
Retry with exponential backoff for provider calls.

Delay before retry k (1-based) is min(base_delay * 2^(k-1), max_delay)
plus uniform jitter in [0, jitter]. Only RetryableProviderError consumes
retries; terminal provider errors and any other exception propagate on
the first occurrence. After max_retries retries the last error is raised,
so a permanently failing call is attempted max_retries + 1 times.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_any,
    wait_exponential,
    wait_random,
)

from narrator.models.schemas import RetryPolicy
from narrator.services.errors import RetryableProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """Delay without jitter before retry number `attempt` (1-based)."""
    return min(policy.base_delay * 2 ** (attempt - 1), policy.max_delay)


def _build_wait(policy: RetryPolicy):
    wait = wait_exponential(multiplier=policy.base_delay, min=0, max=policy.max_delay)
    if policy.jitter > 0:
        wait = wait + wait_random(0, policy.jitter)
    return wait


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: SleepFunc = asyncio.sleep,
    should_stop: Callable[[], bool] | None = None,
    label: str = "call",
) -> T:
    """
    Run fn, retrying retryable provider errors per policy.

    Args:
        fn: Zero-argument coroutine function (one attempt per call)
        policy: Retry policy of the job plan
        sleep: Awaitable sleep (tests pass a recorder)
        should_stop: Checked before each retry; True stops retrying and
            re-raises the last error (job cancelled or timed out)
        label: Name used in log messages

    Returns:
        Result of the first successful attempt

    Raises:
        RetryableProviderError: Retries exhausted
        TerminalProviderError: Immediately, without retry
        Exception: Any other exception, immediately
    """
    stop = stop_after_attempt(policy.max_retries + 1)
    if should_stop is not None:
        stop = stop_any(stop, lambda _: should_stop())

    def log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{label}: attempt {retry_state.attempt_number} failed ({error}), "
            f"retrying in {delay:.2f}s"
        )

    retrying = AsyncRetrying(
        stop=stop,
        wait=_build_wait(policy),
        retry=retry_if_exception_type(RetryableProviderError),
        sleep=sleep,
        before_sleep=log_retry,
        reraise=True,
    )
    return await retrying(fn)
