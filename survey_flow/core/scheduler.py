"""Cancellable scheduled tasks over frame and timer boundaries."""

from __future__ import annotations

import asyncio
from typing import Callable

from ..types import Scheduler, TaskHandle


class ScheduledTask:
    """Handle for a multi-stage callback chain.

    Only the stage currently waiting is held; cancelling it stops the chain.
    """

    def __init__(self) -> None:
        self._handle: TaskHandle | None = None
        self.cancelled = False
        self.fired = False

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)

    def _bind(self, handle: TaskHandle) -> None:
        self._handle = handle

    def _mark_fired(self) -> None:
        self.fired = True
        self._handle = None

    def cancel(self) -> None:
        if not self.pending:
            return
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


def after_layout(
    scheduler: Scheduler,
    callback: Callable[[], None],
    settle_delay: float = 0.05,
    frames: int = 2,
) -> ScheduledTask:
    """Run ``callback`` after ``frames`` frame boundaries plus ``settle_delay`` seconds."""
    task = ScheduledTask()

    def _fire() -> None:
        if task.cancelled:
            return
        task._mark_fired()
        callback()

    def _stage(remaining: int) -> None:
        if task.cancelled:
            return
        if remaining > 0:
            task._bind(scheduler.next_frame(lambda: _stage(remaining - 1)))
        else:
            task._bind(scheduler.call_later(settle_delay, _fire))

    _stage(frames)
    return task


class LoopScheduler:
    """Scheduler backed by an asyncio event loop; a frame is a fixed interval."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        frame_interval: float = 1 / 60,
    ) -> None:
        self._loop = loop
        self.frame_interval = frame_interval

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def next_frame(self, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(self.frame_interval, callback)

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback)
