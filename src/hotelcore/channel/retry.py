"""Retry schedule for transient publish failures: exponential backoff, full jitter."""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from hotelcore.infra.settings import PublisherSettings


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 8
    base_seconds: float = 2.0
    cap_seconds: float = 900.0

    @classmethod
    def from_settings(cls, settings: PublisherSettings) -> RetryPolicy:
        return cls(
            max_attempts=settings.max_attempts,
            base_seconds=settings.backoff_base_seconds,
            cap_seconds=settings.backoff_cap_seconds,
        )

    def exhausted(self, attempt: int) -> bool:
        """True once `attempt` attempts have been made and none may follow."""
        return attempt >= self.max_attempts

    def ceiling(self, attempt: int) -> float:
        """Upper bound of the delay after the given (1-based) attempt."""
        return min(self.cap_seconds, self.base_seconds * (2 ** max(attempt - 1, 0)))

    def delay(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Full jitter: uniform in [0, ceiling(attempt))."""
        return rng() * self.ceiling(attempt)

    def next_attempt_at(
        self,
        attempt: int,
        now: datetime,
        rng: Callable[[], float] = random.random,
    ) -> datetime:
        return now + timedelta(seconds=self.delay(attempt, rng))
