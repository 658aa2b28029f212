"""Poll-until-condition waiter.

Used wherever the provider offers no blocking "wait" primitive, e.g. waiting
for a self-hosted integration runtime to report Online after the VM reboots.

Waiting blocks the single control thread. Total wait time is bounded by
``max_attempts * interval_seconds``; there is no wall-clock deadline.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

StatusT = TypeVar("StatusT")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry budget with a fixed delay between attempts."""

    max_attempts: int
    interval_seconds: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1: {self.max_attempts}")
        if self.interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive: {self.interval_seconds}")

    @property
    def total_wait_seconds(self) -> float:
        """Upper bound of time spent sleeping under this policy."""
        return (self.max_attempts - 1) * self.interval_seconds


@dataclass(frozen=True)
class WaitResult(Generic[StatusT]):
    """Outcome of a wait: readiness, fetches performed and last observed status."""

    ready: bool
    attempts: int
    final_status: StatusT


def wait_until(
    fetch: Callable[[], StatusT],
    is_ready: Callable[[StatusT], bool],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    description: str | None = None,
) -> WaitResult[StatusT]:
    """Fetch status until ``is_ready`` holds or the retry budget is spent.

    Fetch errors are not retried and propagate immediately.

    Args:
        fetch: Returns the current status. Called at most ``policy.max_attempts`` times.
        is_ready: Predicate deciding whether a status is the target state.
        policy: Attempt budget and inter-attempt delay.
        sleep: Blocking delay function (injectable for tests).
        description: Human-readable subject for log records.

    Returns:
        WaitResult with ``ready=True`` on the first satisfying attempt, otherwise
        ``ready=False`` and ``attempts == policy.max_attempts``.
    """
    subject = description or "condition"
    status = fetch()
    attempt = 1

    while True:
        if is_ready(status):
            logger.info(
                f"{subject} ready",
                extra={"attempts": attempt, "max_attempts": policy.max_attempts},
            )
            return WaitResult(ready=True, attempts=attempt, final_status=status)

        if attempt >= policy.max_attempts:
            break

        logger.debug(
            f"{subject} not ready, waiting",
            extra={
                "attempt": attempt,
                "max_attempts": policy.max_attempts,
                "wait_seconds": policy.interval_seconds,
            },
        )
        sleep(policy.interval_seconds)
        status = fetch()
        attempt += 1

    logger.warning(
        f"{subject} not ready after {attempt} attempt(s)",
        extra={"attempts": attempt, "interval_seconds": policy.interval_seconds},
    )
    return WaitResult(ready=False, attempts=attempt, final_status=status)
