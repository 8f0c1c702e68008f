"""Global outbound rate limiting for bundle submissions.

Every bundle submission, whichever operation it belongs to, goes through a
single shared RateLimiter. Access to the window state is serialized with an
asyncio.Lock, and the lock is held while waiting, so concurrent callers queue
up in arrival order instead of racing for the next free slot.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class RateLimiter:
    """At most `max_per_window` acquisitions in any `window`-second span.

    Keeps the dispatch times of the last `max_per_window` acquisitions. When
    the oldest of them is still inside the window, the caller waits until it
    falls out.

    Example:
        limiter = RateLimiter(max_per_window=2, window=1.0)
        await limiter.acquire()
        await relay.submit_bundle(transactions)
    """

    def __init__(
        self,
        max_per_window: int = 2,
        window: float = 1.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        if max_per_window < 1:
            raise ValueError("max_per_window must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")

        self.max_per_window = max_per_window
        self.window = window
        self._clock = clock
        self._sleep = sleep
        self._dispatched: deque[float] = deque(maxlen=max_per_window)
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def _get_lock(self) -> asyncio.Lock:
        # One lock per event loop; a lock is bound to the loop it first waits in
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    async def acquire(self) -> float:
        """Wait for permission to submit.

        Returns:
            Seconds spent waiting
        """
        waited = 0.0
        async with self._get_lock():
            now = self._clock()
            if len(self._dispatched) >= self.max_per_window:
                elapsed = now - self._dispatched[0]
                if elapsed < self.window:
                    wait_time = self.window - elapsed
                    logger.debug(f"Rate limit reached, waiting {wait_time:.3f}s")
                    await self._sleep(wait_time)
                    waited = wait_time
                    now = self._clock()
            self._dispatched.append(now)
        return waited

    def in_current_window(self) -> int:
        """Number of acquisitions within the last window."""
        now = self._clock()
        return sum(1 for t in self._dispatched if now - t < self.window)

    def reset(self) -> None:
        """Forget all recorded acquisitions."""
        self._dispatched.clear()


_shared_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the process-wide limiter, creating it from settings on first use."""
    global _shared_limiter

    if _shared_limiter is None:
        from solrelay.config import get_settings

        settings = get_settings()
        _shared_limiter = RateLimiter(
            max_per_window=settings.max_bundles_per_second,
            window=settings.rate_limit_window,
        )
        logger.info(
            f"Bundle rate limiter: {settings.max_bundles_per_second} per "
            f"{settings.rate_limit_window}s"
        )
    return _shared_limiter


def reset_rate_limiter() -> None:
    """Drop the process-wide limiter (useful for testing)."""
    global _shared_limiter
    _shared_limiter = None
