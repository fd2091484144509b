"""Cancellable asyncio timers.

PollLoop    runs a coroutine every `interval` seconds. A tick that comes due
            while the previous call is still running is skipped, so slow
            store round-trips never stack up duplicate writes.
Countdown   fires a callback once when an absolute deadline passes.

Both are owned by a PlayerSession and stopped when it closes; neither
keeps running after its owner is gone.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable

from city_race.clock import Clock
from city_race.scheduler import remaining_seconds

logger = logging.getLogger(__name__)


class PollLoop:
    def __init__(self, fn: Callable[[], Awaitable[Any]], interval: float, name: str = "poll") -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.fn = fn
        self.interval = interval
        self.name = name
        self.calls = 0
        self.skipped = 0
        self.errors = 0
        self._task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def busy(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def tick(self) -> bool:
        """Start one call unless one is still in flight. Returns whether it started."""
        if self.busy:
            self.skipped += 1
            logger.debug("%s: previous call still running, tick skipped", self.name)
            return False
        self._inflight = asyncio.create_task(self._call())
        return True

    async def _call(self) -> None:
        self.calls += 1
        try:
            await self.fn()
        except asyncio.CancelledError:
            raise
        except Exception:
            self.errors += 1
            logger.exception("%s: poll failed", self.name)

    async def _run(self) -> None:
        while True:
            self.tick()
            await asyncio.sleep(self.interval)

    def start(self) -> PollLoop:
        if not self.is_running:
            self._task = asyncio.create_task(self._run())
        return self

    async def wait_idle(self) -> None:
        if self._inflight is not None:
            await asyncio.gather(self._inflight, return_exceptions=True)

    async def stop(self) -> None:
        tasks = [t for t in (self._task, self._inflight) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._task = None
        self._inflight = None


class Countdown:
    def __init__(
        self,
        expires_at: datetime,
        clock: Clock,
        callback: Callable[[], Any],
        name: str = "countdown",
    ) -> None:
        self.expires_at = expires_at
        self.clock = clock
        self.callback = callback
        self.name = name
        self.fired = False
        self._task: asyncio.Task | None = None

    def remaining(self) -> float:
        return remaining_seconds(self.expires_at, self.clock.now())

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> Countdown:
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        return self

    async def _run(self) -> None:
        await asyncio.sleep(self.remaining())
        self.fired = True
        logger.debug("%s reached zero", self.name)
        try:
            result = self.callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("%s: expiry callback failed", self.name)

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def cancel(self) -> None:
        if self.is_running:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
