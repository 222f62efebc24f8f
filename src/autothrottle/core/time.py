from __future__ import annotations

"""
autothrottle.core.time
======================

Clock abstraction used by the control loop so tests can drive ticks without
real sleeping.
"""

import asyncio
import time
from typing import Protocol

from .types import Millis


class Clock(Protocol):
    def now_ms(self) -> Millis: ...
    def mono_ms(self) -> Millis: ...
    async def sleep_ms(self, ms: Millis) -> None: ...


class SystemClock:
    """Wall/monotonic time from the OS; real asyncio sleeps."""

    def now_ms(self) -> Millis:
        return time.time_ns() // 1_000_000

    def mono_ms(self) -> Millis:
        return time.monotonic_ns() // 1_000_000

    async def sleep_ms(self, ms: Millis) -> None:
        await asyncio.sleep(max(0.0, ms / 1000.0))


class ManualClock(SystemClock):
    """
    Deterministic clock for tests: time only moves through `sleep_ms` or
    `advance`. `sleep_ms` still yields to the event loop once so other tasks run.
    """

    def __init__(self, start_ms: Millis = 0) -> None:
        self._now = start_ms
        self.sleeps: list[Millis] = []

    def now_ms(self) -> Millis:
        return self._now

    def mono_ms(self) -> Millis:
        return self._now

    def advance(self, ms: Millis) -> None:
        self._now += max(0, int(ms))

    async def sleep_ms(self, ms: Millis) -> None:
        self.sleeps.append(int(ms))
        self.advance(ms)
        await asyncio.sleep(0)
