"""
Retry policies - pure decisions about whether and when to retry.

Attempt numbering starts at 0 for the first retry decision. Every policy
refuses once ``attempt >= max_attempts``, whatever its predicate says.
"""

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable

from courier.services.models import ErrorCategory, Failure

DEFAULT_RETRY_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
DEFAULT_RETRY_CATEGORIES = frozenset({ErrorCategory.NETWORK, ErrorCategory.TIMEOUT})


class RetryPolicy(ABC):
    """Decides whether a failed attempt should be retried."""

    max_attempts: int

    def should_retry(self, failure: Failure, attempt: int) -> bool:
        if attempt >= self.max_attempts:
            return False
        return self._is_retryable(failure, attempt)

    @abstractmethod
    def _is_retryable(self, failure: Failure, attempt: int) -> bool: ...

    @abstractmethod
    def get_delay(self, attempt: int) -> timedelta: ...


def _matches(
    failure: Failure,
    status_codes: frozenset[int],
    categories: frozenset[ErrorCategory],
) -> bool:
    if failure.status_code is not None and failure.status_code in status_codes:
        return True
    return failure.category in categories


@dataclass(frozen=True)
class NoRetryPolicy(RetryPolicy):
    """Never retries."""

    max_attempts: int = field(default=0, init=False)

    def _is_retryable(self, failure: Failure, attempt: int) -> bool:
        return False

    def get_delay(self, attempt: int) -> timedelta:
        return timedelta(0)


@dataclass(frozen=True)
class FixedDelayRetryPolicy(RetryPolicy):
    """Retries up to ``max_attempts`` times with a constant delay."""

    max_attempts: int
    delay: timedelta
    retry_status_codes: frozenset[int] = DEFAULT_RETRY_STATUS_CODES
    retry_categories: frozenset[ErrorCategory] = DEFAULT_RETRY_CATEGORIES

    def _is_retryable(self, failure: Failure, attempt: int) -> bool:
        return _matches(failure, self.retry_status_codes, self.retry_categories)

    def get_delay(self, attempt: int) -> timedelta:
        return self.delay


@dataclass(frozen=True)
class ExponentialBackoffRetryPolicy(RetryPolicy):
    """
    Exponential backoff: ``initial_delay * multiplier ** attempt``.

    The delay is capped at ``max_delay`` when set. With ``jitter`` the capped
    delay is scaled by a random factor in [0.5, 1.0) so that many clients
    failing together do not retry in lockstep.
    """

    max_attempts: int
    initial_delay: timedelta
    multiplier: float = 2.0
    max_delay: timedelta | None = None
    jitter: bool = True
    retry_status_codes: frozenset[int] = DEFAULT_RETRY_STATUS_CODES
    retry_categories: frozenset[ErrorCategory] = DEFAULT_RETRY_CATEGORIES

    def _is_retryable(self, failure: Failure, attempt: int) -> bool:
        return _matches(failure, self.retry_status_codes, self.retry_categories)

    def get_delay(self, attempt: int) -> timedelta:
        delay = self.initial_delay * (self.multiplier**attempt)
        if self.max_delay is not None and delay > self.max_delay:
            delay = self.max_delay
        if self.jitter:
            delay = delay * (0.5 + random.random() * 0.5)
        return delay


@dataclass(frozen=True)
class CustomRetryPolicy(RetryPolicy):
    """Caller-supplied predicate and delay function."""

    max_attempts: int
    delay_fn: Callable[[int], timedelta]
    predicate: Callable[[Failure], bool]

    def _is_retryable(self, failure: Failure, attempt: int) -> bool:
        return self.predicate(failure)

    def get_delay(self, attempt: int) -> timedelta:
        return self.delay_fn(attempt)
