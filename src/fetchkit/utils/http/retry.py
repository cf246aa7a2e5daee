"""Retry policy and backoff control.

A :class:`RetryPolicy` describes when a failed attempt may be retried
and how long to wait before the next one. A :class:`RetryController`
applies a policy to one ``perform`` call: it counts retries, classifies
each failure and suspends the caller for the backoff delay.

Backoff grows exponentially from ``initial_backoff`` by
``backoff_multiplier`` per retry. An optional jitter range multiplies
each delay by a uniform random draw to avoid synchronized retries.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, FrozenSet, Optional, Tuple

from ...exceptions import (
    ConfigurationError,
    FetchError,
    RequestFailedError,
    StatusCodeError,
)
from .transport import DEFAULT_RETRYABLE_ERROR_CODES, TransportErrorCode

logger = logging.getLogger(__name__)

RetryPredicate = Callable[[FetchError, int], bool]
SleepFunc = Callable[[float], Awaitable[None]]

DEFAULT_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryPolicy:
    """Retry behavior configuration for ``FetchClient``.

    :param enabled: Enables retries. When False, requests run once
    :type enabled: bool
    :param max_retries: Maximum number of retries, not counting the first try
    :type max_retries: int
    :param initial_backoff: Delay in seconds before the first retry
    :type initial_backoff: float
    :param backoff_multiplier: Factor applied to the delay after each retry
    :type backoff_multiplier: float
    :param jitter: Optional ``(low, high)`` range; each delay is multiplied
                   by a uniform draw from it
    :type jitter: Optional[Tuple[float, float]]
    :param retryable_status_codes: Status codes that are retried
    :type retryable_status_codes: FrozenSet[int]
    :param retryable_error_codes: Transport error categories that are retried
    :type retryable_error_codes: FrozenSet[TransportErrorCode]
    :param should_retry: Optional ``(error, retries_so_far) -> bool``. When
                         set, its verdict replaces the built-in
                         classification entirely
    :type should_retry: Optional[RetryPredicate]
    """

    enabled: bool = False
    max_retries: int = 2
    initial_backoff: float = 0.2
    backoff_multiplier: float = 2.0
    jitter: Optional[Tuple[float, float]] = None
    retryable_status_codes: FrozenSet[int] = DEFAULT_RETRYABLE_STATUS_CODES
    retryable_error_codes: FrozenSet[TransportErrorCode] = DEFAULT_RETRYABLE_ERROR_CODES
    should_retry: Optional[RetryPredicate] = None

    def __post_init__(self):
        if self.max_retries < 0:
            raise ConfigurationError(
                "max_retries must not be negative", setting="max_retries"
            )
        if self.jitter is not None:
            low, high = self.jitter
            if low > high:
                raise ConfigurationError(
                    f"Jitter range is empty: {low} > {high}", setting="jitter"
                )
            object.__setattr__(self, "jitter", (float(low), float(high)))
        object.__setattr__(
            self, "retryable_status_codes", frozenset(self.retryable_status_codes)
        )
        object.__setattr__(
            self,
            "retryable_error_codes",
            frozenset(TransportErrorCode(c) for c in self.retryable_error_codes),
        )

    @classmethod
    def for_interactive(cls) -> "RetryPolicy":
        """Create a policy for user-facing requests: few, quick retries."""
        return cls(
            enabled=True,
            max_retries=2,
            initial_backoff=0.2,
            backoff_multiplier=2.0,
            jitter=(0.8, 1.2),
        )

    @classmethod
    def for_batch(cls) -> "RetryPolicy":
        """Create a policy for background work: more retries, longer waits."""
        return cls(
            enabled=True,
            max_retries=5,
            initial_backoff=1.0,
            backoff_multiplier=2.0,
            jitter=(0.8, 1.2),
        )

    def is_retryable(self, error: FetchError) -> bool:
        """Built-in classification, ignoring limits and the override predicate.

        Status errors are retryable when their code is listed, transport
        failures when their category is listed. Every other error kind is
        never retryable.

        :param error: The failure of the last attempt
        :type error: FetchError
        :return: True if the error kind and value are retryable
        :rtype: bool
        """
        if isinstance(error, StatusCodeError):
            return error.status_code in self.retryable_status_codes
        if isinstance(error, RequestFailedError):
            return error.error_code in self.retryable_error_codes
        return False

    def backoff_delay(self, retry: int, rng: Optional[random.Random] = None) -> float:
        """Compute the delay before a retry.

        ``delay = initial_backoff * backoff_multiplier ** max(retry - 1, 0)``,
        then scaled by a jitter draw when a jitter range is set.

        :param retry: 1-based index of the retry about to happen
        :type retry: int
        :param rng: Random source for jitter
        :type rng: Optional[random.Random]
        :return: Delay in seconds; zero or less means no wait
        :rtype: float
        """
        delay = self.initial_backoff * self.backoff_multiplier ** max(retry - 1, 0)
        if self.jitter is not None:
            delay *= (rng or random).uniform(*self.jitter)
        return delay


class RetryController:
    """Applies a :class:`RetryPolicy` across the attempts of one request.

    The first try is attempt 0 and does not count against
    ``max_retries``.

    :param policy: Retry policy to apply
    :type policy: RetryPolicy
    :param sleep: Non-blocking sleep used for backoff
    :type sleep: SleepFunc
    :param rng: Random source for jitter
    :type rng: Optional[random.Random]
    """

    def __init__(
        self,
        policy: RetryPolicy,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.policy = policy
        self.retries = 0
        self._sleep = sleep
        self._rng = rng

    def should_retry(self, error: FetchError) -> bool:
        """Decide whether the failed attempt is retried.

        :param error: The failure of the last attempt
        :type error: FetchError
        :return: True if another attempt should be made
        :rtype: bool
        """
        policy = self.policy
        if not policy.enabled or self.retries >= policy.max_retries:
            return False
        if policy.should_retry is not None:
            return bool(policy.should_retry(error, self.retries))
        return policy.is_retryable(error)

    async def backoff(self) -> float:
        """Count a retry and wait for its backoff delay.

        :return: The delay that was applied, in seconds
        :rtype: float
        """
        self.retries += 1
        delay = self.policy.backoff_delay(self.retries, self._rng)
        logger.debug(
            "Retry %d/%d after %.3fs", self.retries, self.policy.max_retries, delay
        )
        if delay > 0:
            await self._sleep(delay)
        return delay
