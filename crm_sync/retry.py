"""Bounded retry helper for network calls.

Retries only the exception types the caller names, with a fixed delay
between attempts. There is no unbounded retry anywhere in the pipeline.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for one unit of work.

    Attributes:
        max_attempts: Total attempts including the first one (>= 1).
        backoff_seconds: Fixed delay slept before each retry.
    """

    max_attempts: int = 2
    backoff_seconds: float = 0.75

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds must not be negative")


NO_RETRY = RetryPolicy(max_attempts=1, backoff_seconds=0.0)


def attempt_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...],
    description: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` and retry it on the listed exception types.

    Args:
        operation: Zero-argument callable performing one attempt.
        policy: Attempt budget and fixed backoff.
        retry_on: Exception types that trigger a retry. Anything else
            propagates immediately.
        description: Label used in log lines.
        sleep: Injected for tests.

    Returns:
        The first successful result.

    Raises:
        The last retryable exception once the budget is exhausted.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = operation()
            if attempt > 1:
                logger.info("%s succeeded on attempt %d/%d", description, attempt, policy.max_attempts)
            return result
        except retry_on as exc:
            if attempt >= policy.max_attempts:
                logger.error(
                    "%s failed after %d attempt(s): %s",
                    description,
                    policy.max_attempts,
                    exc,
                )
                raise
            logger.warning(
                "%s attempt %d/%d failed, retrying in %.2fs: %s",
                description,
                attempt,
                policy.max_attempts,
                policy.backoff_seconds,
                exc,
            )
            sleep(policy.backoff_seconds)

    raise AssertionError("unreachable")
