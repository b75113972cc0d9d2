"""Deadlines and paced waiting.

Both OAuth flows wait on something outside the process: the operator's browser redirect, or
the operator entering a user code on another device. Waits go through a Pacer, which sleeps
until an explicit wake time and wakes early when the run is cancelled, and a Deadline, which
bounds a whole sequence of waits.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

from social.graze.quota.errors import AuthorizationCancelled

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class Deadline:
    """
    A fixed point on the pacer's clock, or no bound at all.

    An unbounded deadline never expires and never clips a delay.
    """

    def __init__(self, at: Optional[float], clock: Clock) -> None:
        self.at = at
        self._clock = clock

    @classmethod
    def after(cls, seconds: Optional[float], clock: Clock) -> "Deadline":
        if seconds is None:
            return cls(None, clock)
        return cls(clock() + seconds, clock)

    @property
    def bounded(self) -> bool:
        return self.at is not None

    def remaining(self) -> Optional[float]:
        if self.at is None:
            return None
        return max(0.0, self.at - self._clock())

    def expired(self) -> bool:
        return self.at is not None and self._clock() >= self.at

    def clip(self, delay: float) -> float:
        """Shorten delay so that a wait ends no later than the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return delay
        return min(delay, remaining)


class Pacer:
    """
    Sleeps until explicit wake times on a monotonic clock.

    A single pacer is shared by every flow of a run. Setting its cancellation event (through
    cancel()) interrupts the current wait and every later one with AuthorizationCancelled.
    """

    def __init__(
        self,
        clock: Clock = time.monotonic,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self._clock = clock
        self._cancel_event = cancel_event or asyncio.Event()

    def now(self) -> float:
        return self._clock()

    def deadline(self, seconds: Optional[float]) -> Deadline:
        return Deadline.after(seconds, self._clock)

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        logger.info("Cancellation requested")
        self._cancel_event.set()

    def check(self) -> None:
        if self._cancel_event.is_set():
            raise AuthorizationCancelled("Run cancelled by operator")

    async def sleep(self, delay: float) -> None:
        await self.sleep_until(self._clock() + max(0.0, delay))

    async def sleep_until(self, wake_at: float) -> None:
        self.check()
        delay = max(0.0, wake_at - self._clock())
        await self._wait(delay)
        self.check()

    async def _wait(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
