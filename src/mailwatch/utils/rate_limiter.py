"""
Rate limiter for mail provider API calls.
"""

from __future__ import annotations
import asyncio
import time
from collections import deque
from typing import Optional

from mailwatch.logging import logger


class AsyncRateLimiter:
    """
    Sliding-window rate limiter shared by every account polled through the
    same provider client.

    Tracks call times within the window and waits (without blocking the event
    loop) once the limit is reached.
    """

    def __init__(self, max_calls: int, time_window_seconds: float = 60):
        """
        Args:
            max_calls: Maximum number of calls allowed in the time window
            time_window_seconds: Time window in seconds (default: 60 = 1 minute)
        """
        if max_calls < 1:
            raise ValueError(f"max_calls must be positive, got {max_calls}")
        self.max_calls = max_calls
        self.time_window = time_window_seconds
        self.call_times: deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self.call_times and (now - self.call_times[0]) > self.time_window:
            self.call_times.popleft()

    async def acquire(self, blocking: bool = True, timeout: Optional[float] = None) -> bool:
        """
        Acquire permission to make an API call.

        Args:
            blocking: If True, wait until a call slot is available
            timeout: Maximum time to wait in seconds (None = wait as long as needed)

        Returns:
            True if permission granted, False if not blocking or the wait would
            exceed the timeout
        """
        async with self._lock:
            now = time.monotonic()
            self._prune(now)

            if len(self.call_times) < self.max_calls:
                self.call_times.append(now)
                return True

            if not blocking:
                logger.warning(
                    f"Rate limit exceeded: {len(self.call_times)}/{self.max_calls} calls "
                    f"in the last {self.time_window}s"
                )
                return False

            wait_time = self.time_window - (now - self.call_times[0]) + 0.1

        if timeout is not None and wait_time > timeout:
            logger.warning(f"Rate limit wait time ({wait_time:.2f}s) exceeds timeout ({timeout}s)")
            return False

        logger.debug(f"Rate limit reached, waiting {wait_time:.2f}s...")
        await asyncio.sleep(wait_time)
        remaining = None if timeout is None else max(0.0, timeout - wait_time)
        return await self.acquire(blocking=True, timeout=remaining)

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None
