"""Bounded retry with a fixed delay.

Used by the verify stage: wait, probe, and repeat a fixed number of times.
There is no backoff growth and no jitter; the same delay precedes every
attempt, including the first.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from shipline.observability.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    """Result of a bounded retry.

    Attributes:
        succeeded: True if some attempt satisfied the predicate.
        attempts: Number of attempts actually made.
        last_result: Value returned by the final attempt.
    """

    succeeded: bool
    attempts: int
    last_result: T | None = None


async def retry_fixed(
    action: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    delay: float,
    predicate: Callable[[T], bool] = bool,
    sleep: SleepFn = asyncio.sleep,
) -> RetryOutcome[T]:
    """Run ``action`` until ``predicate`` accepts its result or attempts run out.

    Each attempt is ``sleep(delay)`` followed by ``action()``. Exceptions
    raised by the action propagate to the caller unchanged.

    Args:
        action: Async callable producing a result per attempt.
        attempts: Maximum number of attempts (at least 1).
        delay: Seconds to wait before each attempt.
        predicate: Decides whether a result counts as success.
        sleep: Sleep function, replaceable in tests.

    Returns:
        RetryOutcome describing the final state.

    Raises:
        ValueError: If attempts < 1 or delay < 0.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be at least 1, got {attempts}")
    if delay < 0:
        raise ValueError(f"delay must not be negative, got {delay}")

    last_result: T | None = None
    for attempt in range(1, attempts + 1):
        await sleep(delay)
        last_result = await action()
        if predicate(last_result):
            log.debug("retry_succeeded", attempt=attempt, max_attempts=attempts)
            return RetryOutcome(succeeded=True, attempts=attempt, last_result=last_result)
        log.info("retry_attempt_failed", attempt=attempt, max_attempts=attempts)

    return RetryOutcome(succeeded=False, attempts=attempts, last_result=last_result)
