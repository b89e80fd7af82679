from __future__ import annotations

import asyncio
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        ...


class AsyncioScheduler(Scheduler):
    """Schedules callbacks on the running event loop (or an explicitly given one)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay_s: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, float(delay_s)), callback)
