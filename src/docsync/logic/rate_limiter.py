"""
Provider request rate limiter.

Token bucket for the sustained request rate plus a "do not call before"
deadline set when the provider throttles us. One limiter belongs to one
connector; limiters are never shared across sources.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable

from docsync.logic.cancellation import CancellationToken

# Backoff applied when the provider's Retry-After hint is missing or malformed
DEFAULT_BACKOFF_SECONDS = 60


@dataclass(frozen=True)
class RateLimitConfig:
    """
    Rate limit settings for one provider.

    Attributes:
        requests_per_second: Sustained request rate.
        burst_size: Maximum number of requests allowed back to back.
    """

    requests_per_second: float
    burst_size: int


class RateLimiter:
    """
    Token bucket rate limiter with throttling backoff.

    Thread-safe: a single lock guards the bucket and the backoff deadline.
    The lock is never held while waiting.
    """

    def __init__(
        self,
        requests_per_second: float,
        burst_size: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize rate limiter.

        Args:
            requests_per_second: Sustained request rate (must be positive).
            burst_size: Bucket capacity (must be at least 1).
            clock: Monotonic clock, injectable for tests.

        Raises:
            ValueError: If rate or burst are not positive.
        """
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        if burst_size < 1:
            raise ValueError("burst_size must be at least 1")

        self._rate = float(requests_per_second)
        self._burst = burst_size
        self._clock = clock
        self._tokens = float(burst_size)
        self._updated_at = clock()
        self._retry_at = 0.0
        self._lock = threading.Lock()

    @classmethod
    def from_config(
        cls,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> "RateLimiter":
        """
        Create a limiter from a provider's rate limit settings.

        Args:
            config: Rate and burst settings.
            clock: Monotonic clock, injectable for tests.

        Returns:
            New RateLimiter instance.
        """
        return cls(config.requests_per_second, config.burst_size, clock=clock)

    @property
    def requests_per_second(self) -> float:
        """Get sustained request rate."""
        return self._rate

    @property
    def burst_size(self) -> int:
        """Get bucket capacity."""
        return self._burst

    @property
    def retry_at(self) -> float:
        """Clock value before which no request should be issued."""
        with self._lock:
            return self._retry_at

    @property
    def backoff_remaining(self) -> float:
        """Seconds left in the current backoff window (0 if none)."""
        with self._lock:
            return max(0.0, self._retry_at - self._clock())

    def _refill(self, now: float) -> None:
        # Caller holds the lock
        elapsed = now - self._updated_at
        if elapsed > 0:
            self._tokens = min(float(self._burst), self._tokens + elapsed * self._rate)
            self._updated_at = now

    def _reserve(self) -> float:
        """
        Try to take a token.

        Returns:
            0 if a token was taken, otherwise seconds to wait before
            trying again.
        """
        with self._lock:
            now = self._clock()
            if now < self._retry_at:
                return self._retry_at - now

            self._refill(now)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0

            return (1.0 - self._tokens) / self._rate

    async def wait(self, cancel_token: CancellationToken) -> None:
        """
        Block until a request may be issued.

        The backoff deadline is honored before the bucket is consulted,
        and re-checked after every sleep.

        Args:
            cancel_token: Token that aborts the wait.

        Raises:
            SyncCancelledError: If the token fires first.
        """
        while True:
            cancel_token.raise_if_cancelled()
            delay = self._reserve()
            if delay <= 0:
                return
            await cancel_token.sleep(delay)

    def allow(self) -> bool:
        """
        Take a token without blocking.

        Returns:
            True if a request may be issued now, False during backoff or
            when the bucket is empty.
        """
        with self._lock:
            now = self._clock()
            if now < self._retry_at:
                return False

            self._refill(now)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def record_throttled(self, retry_after_seconds: int | None = None) -> None:
        """
        Start a backoff window after the provider throttled us.

        Args:
            retry_after_seconds: Provider's Retry-After hint. Missing or
                non-positive values fall back to DEFAULT_BACKOFF_SECONDS.
        """
        if retry_after_seconds is None or retry_after_seconds <= 0:
            retry_after_seconds = DEFAULT_BACKOFF_SECONDS

        with self._lock:
            self._retry_at = self._clock() + retry_after_seconds

    def reset(self) -> None:
        """Clear any backoff and refill the bucket."""
        with self._lock:
            self._retry_at = 0.0
            self._tokens = float(self._burst)
            self._updated_at = self._clock()


# Per-provider defaults
DROPBOX_RATE_LIMIT = RateLimitConfig(requests_per_second=5.0, burst_size=10)
GOOGLE_RATE_LIMIT = RateLimitConfig(requests_per_second=10.0, burst_size=20)
GRAPH_RATE_LIMIT = RateLimitConfig(requests_per_second=10.0, burst_size=15)
NOTION_RATE_LIMIT = RateLimitConfig(requests_per_second=3.0, burst_size=10)
