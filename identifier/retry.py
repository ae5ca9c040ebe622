from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Callable, Union

from recognition.types import FailureReason


# These never succeed on a second try, whatever the policy predicate says.
NEVER_RETRY = frozenset(
    {
        FailureReason.CANCELLED,
        FailureReason.MALFORMED_RESPONSE,
        FailureReason.SERVER_REJECTED,
        FailureReason.INVALID_IMAGE,
    }
)


def default_retryable(reason: FailureReason) -> bool:
    return reason in {FailureReason.NETWORK, FailureReason.RATE_LIMITED}


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 2.0
    multiplier: float = 2.0
    jitter: float = 1.0
    max_delay: float = 30.0
    rate_limited_delay: float = 5.0
    retryable: Callable[[FailureReason], bool] = default_retryable

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.rate_limited_delay < 0 or self.jitter < 0:
            raise ValueError("delays must not be negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be at least 1")


@dataclass(frozen=True)
class RetryAfter:
    delay: float


@dataclass(frozen=True)
class Stop:
    pass


RetryDecision = Union[RetryAfter, Stop]

STOP = Stop()


class RetryController:
    """Decide whether a failed attempt is retried and after how long.

    Holds no mutable state; the injectable ``rng`` is the only source of
    variation, so decisions can be tested without clocks or I/O.
    """

    def __init__(self, policy: RetryPolicy | None = None, rng: random.Random | None = None) -> None:
        self.policy = policy or RetryPolicy()
        self._rng = rng or random.Random()

    @property
    def max_attempts(self) -> int:
        return self.policy.max_attempts

    def should_retry(
        self,
        reason: FailureReason,
        attempt: int,
        retry_after: float | None = None,
    ) -> RetryDecision:
        """``attempt`` is the 1-indexed attempt that just failed."""
        if reason in NEVER_RETRY or not self.policy.retryable(reason):
            return STOP
        if attempt >= self.policy.max_attempts:
            return STOP
        return RetryAfter(delay=self.delay_for(reason, attempt, retry_after))

    def delay_for(
        self,
        reason: FailureReason,
        attempt: int,
        retry_after: float | None = None,
    ) -> float:
        policy = self.policy
        base = policy.rate_limited_delay if reason is FailureReason.RATE_LIMITED else policy.base_delay
        delay = base * policy.multiplier ** max(0, attempt - 1)
        if policy.jitter > 0:
            delay += self._rng.uniform(0.0, policy.jitter)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, policy.max_delay)


__all__ = [
    "NEVER_RETRY",
    "RetryAfter",
    "RetryController",
    "RetryDecision",
    "RetryPolicy",
    "STOP",
    "Stop",
    "default_retryable",
]
