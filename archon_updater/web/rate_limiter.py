"""Token bucket shared by all fetch workers."""

import threading
import time
from typing import Callable

from archon_updater.utils.logger import get_logger


class RateLimiter:
    """
    Thread-safe token bucket.

    Tokens refill continuously at `rate` per second up to `capacity`.
    `acquire()` blocks until a token is available. Sleeping happens
    outside the lock so other workers can still check admission.
    """

    def __init__(
        self,
        rate: float = 2.0,
        capacity: int = 5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize rate limiter.

        Args:
            rate: Tokens added per second
            capacity: Maximum burst size
            clock: Monotonic time source
            sleep: Sleep function (injectable for tests)
        """
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")

        self.rate = float(rate)
        self.capacity = int(capacity)
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = threading.Lock()
        self.log = get_logger()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated = now

    def try_acquire(self) -> bool:
        """Take a token if one is available, without waiting."""
        with self._lock:
            self._refill()
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def acquire(self) -> float:
        """
        Block until a token is available and take it.

        Returns:
            Total seconds spent waiting
        """
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return waited
                wait = (1.0 - self._tokens) / self.rate

            self.log.debug(f"Rate limit reached, waiting {wait:.2f}s")
            self._sleep(wait)
            waited += wait

    @property
    def available(self) -> float:
        """Tokens currently in the bucket."""
        with self._lock:
            self._refill()
            return self._tokens
