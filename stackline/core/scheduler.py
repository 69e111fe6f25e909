#!/usr/bin/env python3
"""
Single-shot timer scheduling.

Fetch refreshes and gesture timers go through a Scheduler so they can run on
the asyncio loop in production and on a virtual clock in tests.
"""
from __future__ import annotations

import asyncio
import heapq
import itertools
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

from ..shared.utils import now_ms as wall_clock_ms


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def now_ms(self) -> int: ...

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Timers on the running asyncio event loop (loop.call_later)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now_ms(self) -> int:
        # Wall clock; the loop monotonic clock is not comparable to sample timestamps
        return wall_clock_ms()

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(max(0, delay_ms) / 1000.0, callback)


@dataclass(order=True)
class _ManualTimer:
    due_ms: int
    seq: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Deterministic virtual-clock scheduler.

    advance(ms) moves the clock forward and runs every timer that became due,
    in due order, including timers scheduled by callbacks along the way.
    """

    def __init__(self, start_ms: int = 0) -> None:
        self._now = int(start_ms)
        self._queue: List[_ManualTimer] = []
        self._seq = itertools.count()

    def now_ms(self) -> int:
        return self._now

    def call_later(self, delay_ms: int, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self._now + max(0, int(delay_ms)), next(self._seq), callback)
        heapq.heappush(self._queue, timer)
        return timer

    @property
    def pending(self) -> List[_ManualTimer]:
        return sorted(t for t in self._queue if not t.cancelled)

    def advance(self, delta_ms: int) -> None:
        target = self._now + int(delta_ms)
        while self._queue and self._queue[0].due_ms <= target:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = timer.due_ms
            timer.callback()
        self._now = target

    def set_time(self, now_ms: int) -> None:
        """Jump the clock without running timers."""
        self._now = int(now_ms)
