"""Time sources and repeating timers.

Every modeled delay (shot spacing, activation settle time, heartbeat and
monitoring intervals) goes through a :class:`Clock` so that tests can drive
a node with :class:`VirtualClock` instead of waiting in real time.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Union[None, Awaitable[None]]]


class Clock(ABC):
    """Abstract time source."""

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for *seconds*."""


class SystemClock(Clock):
    """Wall-clock time backed by the running event loop."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class VirtualClock(Clock):
    """Deterministic clock that only moves when :meth:`advance` is awaited.

    Sleepers are woken in deadline order and the clock reads exactly each
    sleeper's deadline while it runs.  Zero or negative sleeps yield once
    and return without waiting.
    """

    def __init__(self, start: float = 0.0, settle_steps: int = 20) -> None:
        self._now = start
        self._settle_steps = settle_steps
        self._sleepers: list[tuple[float, int, asyncio.Future]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._seq), future))
        await future

    @property
    def pending(self) -> int:
        """Number of coroutines currently sleeping on this clock."""
        return sum(1 for _, _, f in self._sleepers if not f.done())

    async def advance(self, seconds: float) -> None:
        """Move time forward, waking every sleeper whose deadline passes."""
        target = self._now + seconds
        await self._settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            if future.done():
                continue
            self._now = deadline
            future.set_result(None)
            await self._settle()
        self._now = target
        await self._settle()

    async def _settle(self) -> None:
        for _ in range(self._settle_steps):
            await asyncio.sleep(0)


class RepeatingTimer:
    """Run a callback every *interval* seconds on an asyncio task.

    Starting a running timer restarts it, so at most one schedule is ever
    active.  Stopping takes effect before the next tick and never cancels a
    tick that is already running.  Callback exceptions are logged and the
    schedule continues.
    """

    def __init__(
        self,
        interval: float,
        callback: TimerCallback,
        *,
        clock: Clock,
        name: str = "timer",
    ) -> None:
        self.interval = interval
        self.name = name
        self._callback = callback
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._token: object | None = None
        self._ticking = False
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._token is not None

    def start(self, interval: float | None = None) -> None:
        if interval is not None:
            self.interval = interval
        self.stop()
        token = object()
        self._token = token
        self._task = asyncio.create_task(self._run(token), name=self.name)
        logger.debug("Timer %s started (interval %.2fs)", self.name, self.interval)

    def stop(self) -> None:
        if self._token is None:
            return
        self._token = None
        task, self._task = self._task, None
        if task is not None and not self._ticking:
            task.cancel()
        logger.debug("Timer %s stopped", self.name)

    async def _run(self, token: object) -> None:
        while self._token is token:
            await self._clock.sleep(self.interval)
            if self._token is not token:
                break
            self._ticking = True
            try:
                result: Any = self._callback()
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Timer %s callback failed", self.name)
            finally:
                self._ticking = False
            self.ticks += 1
