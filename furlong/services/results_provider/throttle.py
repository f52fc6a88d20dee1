"""Fixed-interval throttle for result provider calls.

The provider allows roughly two calls per second and runs call it
sequentially, so a process-local interval replaces a token bucket.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]
ClockFunc = Callable[[], float]


class IntervalThrottle:
    """
    Enforces a minimum gap between consecutive calls.

    The first call goes straight through; later calls wait out whatever is
    left of the interval since the previous one. Sleep and clock are
    injectable so tests run without real delay.
    """

    def __init__(
        self,
        interval_seconds: float,
        sleep: SleepFunc = asyncio.sleep,
        clock: ClockFunc = time.monotonic,
    ):
        """
        Initialize the throttle.

        Args:
            interval_seconds: Minimum seconds between calls (0 disables)
            sleep: Coroutine function used to wait
            clock: Monotonic clock in seconds
        """
        self.interval = max(0.0, interval_seconds)
        self._sleep = sleep
        self._clock = clock
        self._last_call: float | None = None
        self.sleep_count = 0

    @classmethod
    def from_rate_ms(
        cls,
        rate_ms: int,
        sleep: SleepFunc = asyncio.sleep,
        clock: ClockFunc = time.monotonic,
    ) -> "IntervalThrottle":
        return cls(rate_ms / 1000.0, sleep=sleep, clock=clock)

    def remaining(self) -> float:
        """Seconds until the next call may be made."""
        if self._last_call is None or self.interval <= 0:
            return 0.0
        elapsed = self._clock() - self._last_call
        return max(0.0, self.interval - elapsed)

    async def wait(self) -> None:
        """Block until the next call is allowed, then record it."""
        wait_time = self.remaining()
        if wait_time > 0:
            logger.debug("provider_throttled", wait_time=round(wait_time, 3))
            await self._sleep(wait_time)
            self.sleep_count += 1
        self._last_call = self._clock()
