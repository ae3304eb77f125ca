"""Outbound message rate limiting for the ARI channel."""

from __future__ import annotations

import threading
import time
from typing import Callable

from hotelcore.infra.time import monotonic


class RateLimiter:
    """Space calls at least 1 / max_per_second apart.

    Shared by every publisher thread of a process; acquire() blocks the
    caller until its slot comes up.
    """

    def __init__(
        self,
        max_per_second: float,
        *,
        clock: Callable[[], float] = monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_per_second <= 0:
            raise ValueError("max_per_second must be positive")
        self.interval = 1.0 / max_per_second
        self._clock = clock
        self._sleep = sleep
        self._next_slot: float | None = None
        self._lock = threading.Lock()

    def acquire(self) -> float:
        """Wait for the next slot. Returns the seconds waited."""
        with self._lock:
            now = self._clock()
            if self._next_slot is None or self._next_slot <= now:
                self._next_slot = now + self.interval
                return 0.0
            wait = self._next_slot - now
            self._next_slot += self.interval
        self._sleep(wait)
        return wait
