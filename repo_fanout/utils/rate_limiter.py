"""Request pacing for hosting provider calls.

A single :class:`RateLimiter` is constructed per run and passed to the
provider, so every outbound API request in the process shares one pacing
schedule regardless of how many workers are active. The Push and Merge stages
use a second instance as the operator-configured throttle for side effects
that notify people (opening or merging change requests).

Example:
    >>> limiter = RateLimiter(0.72)
    >>> await limiter.acquire()  # returns immediately the first time
    >>> await limiter.acquire()  # returns ~720ms after the first permit

Thread Safety:
    Safe for concurrent use by any number of tasks on one event loop. Waiters
    are served in arrival order.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

log = structlog.get_logger(__name__)


class RateLimiter:
    """Issue permits no closer together than ``interval`` seconds.

    Attributes:
        interval: Minimum number of seconds between two permits.
        name: Label used in log events.
    """

    def __init__(
        self,
        interval: float,
        name: str = "provider",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if interval < 0:
            raise ValueError(f"interval must be >= 0, got {interval}")
        self.interval = interval
        self.name = name
        self._clock = clock
        self._sleep = sleep
        self._next_slot: float | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def unlimited(cls, name: str = "unlimited") -> "RateLimiter":
        """A limiter that never waits."""
        return cls(0.0, name=name)

    async def acquire(self) -> None:
        """Wait for the next permitted slot.

        The lock is held while sleeping so that permits are handed out one
        at a time, each at least ``interval`` after the previous one.
        """
        if self.interval == 0:
            return

        async with self._lock:
            now = self._clock()
            if self._next_slot is not None and now < self._next_slot:
                delay = self._next_slot - now
                log.debug("rate_limit_wait", limiter=self.name, delay_seconds=round(delay, 3))
                await self._sleep(delay)
                now = max(self._clock(), self._next_slot)
            self._next_slot = now + self.interval
