"""Token-bucket rate limiting for outbound delivery."""

import threading
import time


class TokenBucket:
    """Refills *rate* tokens per second up to *burst*; one token per record.

    Starts full. The clock is injectable so tests can drive the bucket
    without sleeping.
    """

    def __init__(self, rate: float, burst: int = 1, time_func=None):
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        if burst < 1:
            raise ValueError(f"burst must be at least 1, got {burst}")
        self._rate = float(rate)
        self._burst = burst
        self._time_func = time_func or time.monotonic
        self._tokens = float(burst)
        self._last = self._time_func()
        self._lock = threading.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    def _refill(self):
        now = self._time_func()
        elapsed = now - self._last
        if elapsed > 0:
            self._tokens = min(self._burst, self._tokens + elapsed * self._rate)
            self._last = now

    def try_acquire(self) -> bool:
        """Take a token if one is available. Never blocks."""
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def time_until_ready(self) -> float:
        """Seconds until the next token is available (0 if one is ready now)."""
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                return 0.0
            return (1 - self._tokens) / self._rate

    def acquire(self, cancel: threading.Event | None = None) -> bool:
        """Block until a token is taken. Returns False if *cancel* is set first."""
        while True:
            if self.try_acquire():
                return True
            delay = max(self.time_until_ready(), 0.001)
            if cancel is not None:
                if cancel.wait(delay):
                    return False
            else:
                time.sleep(delay)


def build_rate_limiter(rate_limit: int | None) -> TokenBucket | None:
    """None or 0 means delivery is unthrottled."""
    if not rate_limit:
        return None
    return TokenBucket(rate_limit)
