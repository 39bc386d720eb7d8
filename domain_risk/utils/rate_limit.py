from __future__ import annotations

import asyncio
import time


class AsyncRateLimiter:
    """Lets one call through per ``interval`` seconds; callers queue behind the lock."""

    def __init__(self, interval_seconds: float) -> None:
        self.interval = max(0.0, interval_seconds)
        self._lock = asyncio.Lock()
        self._next_time = time.monotonic()

    @classmethod
    def from_delay_ms(cls, delay_ms: int) -> "AsyncRateLimiter":
        return cls(delay_ms / 1000.0)

    async def wait(self) -> None:
        async with self._lock:
            now = time.monotonic()
            if now < self._next_time:
                await asyncio.sleep(self._next_time - now)
            self._next_time = max(now, self._next_time) + self.interval
