"""Exponential backoff policy for provider retries."""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

from notification_engine.core.exceptions import ProviderTransientError

if TYPE_CHECKING:
    from notification_engine.core.settings.delivery import DeliverySettings


class BackoffPolicy:
    """Retry budget and delay schedule for one delivery channel.

    ``max_attempts`` counts every provider call including the first, so a
    record may be retried ``max_attempts - 1`` times. The delay before retry
    ``n`` (0-based) is ``initial_delay * exponential_base ** n`` capped at
    ``max_delay``, optionally scaled by a random jitter factor.

    Example:
        policy = BackoffPolicy(max_attempts=3, initial_delay=1.0)
        policy.calculate_delay(0)  # 1.0
        policy.calculate_delay(1)  # 2.0
        policy.is_exhausted(2)     # True: the third attempt was the last
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = False,
        jitter_range: tuple[float, float] = (0.5, 1.5),
    ) -> None:
        if max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.jitter_range = jitter_range

    @classmethod
    def from_settings(cls, settings: DeliverySettings) -> BackoffPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            exponential_base=settings.backoff_multiplier,
        )

    def should_retry(self, exception: Exception) -> bool:
        return isinstance(exception, ProviderTransientError)

    def is_exhausted(self, retry_count: int) -> bool:
        """True when the attempt made with ``retry_count`` retries was the last one allowed."""
        return retry_count + 1 >= self.max_attempts

    def calculate_delay(self, retry_index: int) -> float:
        delay = self.initial_delay * (self.exponential_base**retry_index)
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay *= random.uniform(self.jitter_range[0], self.jitter_range[1])
        return delay
