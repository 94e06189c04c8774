"""
Bounded-concurrency dispatch of units.

A pool of `limit` workers pulls items in index order. Each provider call
made through ProviderGate.call() additionally holds a process-wide slot and
a per-call timeout. Results are returned re-sorted by index regardless of
completion order.

Failure of one item is recorded on its outcome; siblings keep running.
Cancellation (deadline or caller) stops new items from starting. Items
already in flight may finish, but their results are discarded.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, TypeVar

from narrator.services.errors import (
    JobCancelledError,
    JobTimeoutError,
    PipelineError,
    RetryableProviderError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class CancelReason(str, Enum):
    """Why a job's token was cancelled."""
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class CancellationToken:
    """
    One-shot cancellation flag shared by a job's tasks.

    The first cancel() wins; later calls keep the original reason.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: CancelReason | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: CancelReason = CancelReason.CANCELLED) -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep that ends early once the token is cancelled (retry backoff)."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return


class ProviderGate:
    """
    Process-wide limit and per-call timeout for provider calls.

    One gate is shared by all jobs of a process so that the total number
    of outstanding provider calls never exceeds max_in_flight.

    Example:
        gate = ProviderGate(max_in_flight=16, call_timeout=120)
        result = await gate.call(lambda: vision.analyze(unit))
    """

    def __init__(self, max_in_flight: int, call_timeout: float | None = None):
        self.max_in_flight = max_in_flight
        self.call_timeout = call_timeout
        self._semaphore = asyncio.Semaphore(max_in_flight)
        self.in_flight = 0
        self.peak_in_flight = 0

    async def call(self, fn: Callable[[], Awaitable[R]]) -> R:
        """
        Run one provider call inside a global slot.

        Raises:
            RetryableProviderError: The call exceeded call_timeout
        """
        async with self._semaphore:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                if self.call_timeout is None:
                    return await fn()
                return await asyncio.wait_for(fn(), timeout=self.call_timeout)
            except asyncio.TimeoutError as e:
                raise RetryableProviderError(
                    f"provider call exceeded {self.call_timeout}s",
                    original_error=e,
                ) from e
            finally:
                self.in_flight -= 1


@dataclass
class Outcome(Generic[T]):
    """
    Settled item.

    Attributes:
        index: Position of the item in the submitted list
        item: The submitted item
        value: Return value of fn on success
        error: Exception raised by fn on failure
        discarded: True when the job was cancelled while the item was in
            flight; value/error must be ignored
    """

    index: int
    item: T
    value: Any = None
    error: Exception | None = None
    discarded: bool = False

    @property
    def succeeded(self) -> bool:
        return not self.discarded and self.error is None


OnSettled = Callable[[Outcome], Awaitable[None]]


class ConcurrencyController:
    """
    Worker pool with a per-job concurrency limit.

    Example:
        controller = ConcurrencyController(limit=3)
        outcomes = await controller.run_all(units, analyze_unit, token)
        texts = [o.value.text for o in outcomes if o.succeeded]
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be >= 1, got {limit}")
        self.limit = limit
        self.in_flight = 0
        self.peak_in_flight = 0
        self.started = 0

    async def run_all(
        self,
        items: list[T],
        fn: Callable[[T], Awaitable[Any]],
        token: CancellationToken | None = None,
        on_settled: OnSettled | None = None,
    ) -> list[Outcome[T]]:
        """
        Run fn over items with at most `limit` in flight.

        Args:
            items: Items in index order
            fn: Coroutine function called once per item
            token: Cancellation token; once cancelled no new item starts
            on_settled: Awaited after each non-discarded outcome (progress,
                persistence). Errors raised here abort the run.

        Returns:
            Outcomes of items that started, sorted by index. Items that
            never started are absent.
        """
        token = token or CancellationToken()
        queue: asyncio.Queue[tuple[int, T]] = asyncio.Queue()
        for index, item in enumerate(items):
            queue.put_nowait((index, item))

        outcomes: dict[int, Outcome[T]] = {}

        async def worker() -> None:
            while not token.cancelled:
                try:
                    index, item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                outcome = await self._run_one(index, item, fn, token)
                outcomes[index] = outcome
                if on_settled is not None and not outcome.discarded:
                    await on_settled(outcome)

        workers = [
            asyncio.create_task(worker())
            for _ in range(min(self.limit, len(items)))
        ]
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise

        skipped = len(items) - len(outcomes)
        if skipped:
            logger.info(f"Cancelled ({token.reason}): {skipped} of {len(items)} items never started")

        return [outcomes[index] for index in sorted(outcomes)]

    async def _run_one(
        self,
        index: int,
        item: T,
        fn: Callable[[T], Awaitable[Any]],
        token: CancellationToken,
    ) -> Outcome[T]:
        self.started += 1
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        outcome = Outcome(index=index, item=item)
        try:
            outcome.value = await fn(item)
        except Exception as e:
            # Recorded on the outcome; siblings continue
            outcome.error = e
            logger.debug(f"Item {index} failed: {e}")
        finally:
            self.in_flight -= 1

        if token.cancelled:
            outcome.discarded = True
            outcome.value = None
            outcome.error = None
        return outcome


def cancellation_error(token: CancellationToken, stage=None) -> PipelineError:
    """Error describing why the token was cancelled."""
    if token.reason == CancelReason.TIMEOUT:
        return JobTimeoutError("Job deadline exceeded", stage=stage)
    return JobCancelledError("Job cancelled", stage=stage)
