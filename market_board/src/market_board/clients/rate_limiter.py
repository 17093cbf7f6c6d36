"""Minimum-spacing rate limiter shared by every outbound price request."""

from __future__ import annotations

import asyncio
import time


class MinIntervalRateLimiter:
    """Enforce a fixed minimum gap between the start of successive calls.

    All callers contend for one budget regardless of which item or scope
    they request.  The lock is held across the sleep so that concurrent
    callers are released one at a time, each at least ``min_interval_s``
    after the previous one.
    """

    def __init__(self, min_interval_s: float) -> None:
        self.min_interval_s = max(0.0, min_interval_s)
        self._last_request = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request may start, then record its start time."""
        async with self._lock:
            if self._last_request:
                elapsed = time.monotonic() - self._last_request
                if elapsed < self.min_interval_s:
                    await asyncio.sleep(self.min_interval_s - elapsed)
            self._last_request = time.monotonic()
