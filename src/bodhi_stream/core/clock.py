from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

Sleep = Callable[[float], Awaitable[None]]


class Clock(Protocol):
    def now(self) -> float:
        """Return monotonic seconds."""


class SystemClock:
    def now(self) -> float:
        return time.monotonic()


@dataclass(slots=True)
class FakeClock:
    _now: float = 0.0

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        self._now += seconds

    async def sleep(self, seconds: float) -> None:
        """Drop-in for asyncio.sleep that moves time forward instead of waiting."""
        self.advance(max(seconds, 0.0))
        await asyncio.sleep(0)


class Ticker(Protocol):
    async def wait(self) -> None: ...


class ImmediateTicker:
    """Never waits. Live sources already arrive at real-time speed."""

    async def wait(self) -> None:
        await asyncio.sleep(0)


@dataclass(slots=True)
class IntervalTicker:
    """Fires every ``interval_s`` measured from the first call.

    Deadlines advance by exactly one interval per tick, so time spent by the
    caller between ticks does not accumulate as drift.
    """

    interval_s: float
    clock: Clock = field(default_factory=SystemClock)
    sleep: Sleep = asyncio.sleep

    _deadline: float | None = field(init=False, default=None)

    def __post_init__(self) -> None:
        if self.interval_s < 0:
            raise ValueError("interval_s must be >= 0")

    async def wait(self) -> None:
        now = self.clock.now()
        if self._deadline is None:
            self._deadline = now
        self._deadline += self.interval_s
        delay = self._deadline - now
        if delay > 0:
            await self.sleep(delay)
        else:
            await self.sleep(0)
