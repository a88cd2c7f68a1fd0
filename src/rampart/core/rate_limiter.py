"""
Rate Limiter - Request throttling for a single scan invocation.

Every invocation gets its own limiter built from its own options, so two
scans running side by side on the same engine never consume each other's
quota.

Selection policy (build_rate_limiter):
1. requests per minute, if set
2. requests per second, if set
3. unlimited otherwise
"""

import asyncio
import time
from typing import Optional

import structlog

from .options import EngineOptions


class RateLimiter:
    """
    Fixed-window rate limiter.

    At most ``rate`` acquisitions are granted per ``period`` seconds. Callers
    that exceed the quota wait for the next window.

    Example:
        >>> limiter = RateLimiter(rate=10, period=1.0)
        >>> await limiter.acquire()  # Wait for a request slot
    """

    def __init__(self, rate: int, period: float = 1.0):
        """
        Initialize the rate limiter.

        Args:
            rate: Requests allowed per window
            period: Window length in seconds
        """
        if rate <= 0:
            raise ValueError("rate must be positive")
        if period <= 0:
            raise ValueError("period must be positive")

        self.rate = rate
        self.period = period
        self.request_count = 0

        self._window_start: Optional[float] = None
        self._window_count = 0
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

        self.logger = structlog.get_logger(__name__)

        self.logger.debug(
            "rate_limiter_initialized",
            rate=self.rate,
            period=f"{self.period:.0f}s",
        )

    def _get_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def acquire(self):
        """Wait until the current window has quota left, then take one slot"""
        async with self._get_lock():
            while True:
                now = time.monotonic()
                if self._window_start is None or now - self._window_start >= self.period:
                    self._window_start = now
                    self._window_count = 0

                if self._window_count < self.rate:
                    self._window_count += 1
                    self.request_count += 1
                    return

                delay = self.period - (now - self._window_start)
                self.logger.debug(
                    "rate_limit_wait",
                    delay=f"{delay:.2f}s",
                    rate=self.rate,
                    request_count=self.request_count,
                )
                await asyncio.sleep(delay)

    @property
    def unlimited(self) -> bool:
        return False

    def reset(self):
        """Reset the rate limiter to initial state"""
        self.request_count = 0
        self._window_start = None
        self._window_count = 0

    def get_stats(self) -> dict:
        """
        Get rate limiter statistics.

        Returns:
            Dictionary with current statistics
        """
        return {
            "rate": self.rate,
            "period": self.period,
            "unlimited": False,
            "request_count": self.request_count,
        }

    def __repr__(self) -> str:
        return f"RateLimiter(rate={self.rate}, period={self.period})"


class UnlimitedRateLimiter(RateLimiter):
    """Rate limiter that never waits"""

    def __init__(self):
        self.rate = 0
        self.period = 0.0
        self.request_count = 0
        self.logger = structlog.get_logger(__name__)

    async def acquire(self):
        self.request_count += 1

    @property
    def unlimited(self) -> bool:
        return True

    def reset(self):
        self.request_count = 0

    def get_stats(self) -> dict:
        return {
            "rate": 0,
            "period": 0.0,
            "unlimited": True,
            "request_count": self.request_count,
        }

    def __repr__(self) -> str:
        return "UnlimitedRateLimiter()"


def build_rate_limiter(options: EngineOptions) -> RateLimiter:
    """Create a new limiter whose quota comes only from ``options``"""
    if options.rate_limit_minute > 0:
        return RateLimiter(options.rate_limit_minute, period=60.0)
    if options.rate_limit > 0:
        return RateLimiter(options.rate_limit, period=1.0)
    return UnlimitedRateLimiter()
