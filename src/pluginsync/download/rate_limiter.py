"""Token bucket shared by every registry and download request."""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class RateLimiter:
    """Token bucket limiting outbound requests per second.

    Tokens refill continuously at ``tokens_per_second`` up to ``capacity``.
    Callers block in :meth:`acquire` until enough tokens are available.
    Waiters queue on a turnstile lock, so tokens are handed out in request
    order.

    Args:
        tokens_per_second: Refill rate.
        capacity: Maximum burst size (defaults to the rate, at least 1).
        clock: Monotonic time source, injectable for tests.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        tokens_per_second: float,
        capacity: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if tokens_per_second <= 0:
            raise ValueError("tokens_per_second must be positive")
        self.rate = float(tokens_per_second)
        self.capacity = float(capacity) if capacity else max(self.rate, 1.0)
        self._clock = clock
        self._sleep = sleep
        self._tokens = self.capacity
        self._timestamp = clock()
        self._lock = threading.Lock()
        self._turnstile = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        delta = max(now - self._timestamp, 0.0)
        self._timestamp = now
        self._tokens = min(self.capacity, self._tokens + delta * self.rate)

    def acquire(self, n: float = 1) -> None:
        """Block until ``n`` tokens are available, then consume them."""
        if n <= 0:
            return
        if n > self.capacity:
            raise ValueError(
                f"Cannot acquire {n} tokens from a bucket of capacity {self.capacity}"
            )
        with self._turnstile:
            while True:
                with self._lock:
                    self._refill()
                    if self._tokens >= n:
                        self._tokens -= n
                        return
                    wait = (n - self._tokens) / self.rate
                logger.debug(f"Rate limit reached, waiting {wait:.3f}s")
                self._sleep(wait)

    @property
    def available(self) -> float:
        """Tokens currently in the bucket."""
        with self._lock:
            self._refill()
            return self._tokens
