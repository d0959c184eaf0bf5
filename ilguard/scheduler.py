"""
Scheduler — periodic tasks with explicit cancellation handles
==============================================================

Standing monitors (IL predictor, position monitor) never own timers
directly. They ask a scheduler for a periodic task and hand the returned
TaskHandle back to the caller, who cancels it when done.

Cancellation contract:
  • cancel() only prevents FUTURE ticks
  • a tick already in flight runs to completion and its callbacks fire

Two implementations share the same interface:
  • AsyncioScheduler — real time, runs on the current event loop
  • ManualScheduler  — simulated time, stepped with advance(); pairs with
    ManualClock so price timestamps and ticks move together (tests, offline
    simulation)
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Union

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Union[Awaitable[None], None]]


async def _invoke(callback: TickCallback) -> None:
    result = callback()
    if inspect.isawaitable(result):
        await result


# ── Clocks ───────────────────────────────────────────────────────────────


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def __call__(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        if seconds < 0:
            raise ValueError("clock cannot move backwards")
        self._now += seconds
        return self._now

    def set(self, now: float) -> None:
        if now < self._now:
            raise ValueError("clock cannot move backwards")
        self._now = float(now)


# ── Task Handle ──────────────────────────────────────────────────────────


class TaskHandle:
    """Cancellation handle for a periodic task."""

    def __init__(self, name: str, interval_seconds: float):
        self.name = name
        self.interval_seconds = interval_seconds
        self.ticks = 0
        self._cancelled = False
        self._wake = None  # asyncio.Event when driven by AsyncioScheduler
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop future ticks. An in-flight tick is not interrupted."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._wake is not None:
            self._wake.set()
        logger.debug("Task %s cancelled after %d tick(s)", self.name, self.ticks)

    async def wait(self) -> None:
        """Wait until the underlying loop has exited (AsyncioScheduler only)."""
        if self._task is not None:
            await self._task

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"<TaskHandle {self.name} every {self.interval_seconds}s {state}>"


# ── Real-time Scheduler ──────────────────────────────────────────────────


class AsyncioScheduler:
    """Runs periodic callbacks on the running asyncio event loop."""

    def every(
        self, interval_seconds: float, callback: TickCallback, name: str = "task"
    ) -> TaskHandle:
        """
        Schedule callback every interval_seconds (first tick after one interval).
        Must be called from inside a running event loop.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        handle = TaskHandle(name, interval_seconds)
        handle._wake = asyncio.Event()
        handle._task = asyncio.get_running_loop().create_task(
            self._run(handle, callback)
        )
        return handle

    async def _run(self, handle: TaskHandle, callback: TickCallback) -> None:
        while not handle.cancelled:
            try:
                await asyncio.wait_for(handle._wake.wait(), timeout=handle.interval_seconds)
            except asyncio.TimeoutError:
                pass
            if handle.cancelled:
                break
            handle.ticks += 1
            try:
                await _invoke(callback)
            except Exception:
                # A failing tick must not kill the standing task
                logger.exception("Periodic task %s failed on tick %d", handle.name, handle.ticks)


# ── Simulated-time Scheduler ─────────────────────────────────────────────


class ManualScheduler:
    """
    Deterministic scheduler driven by advance().

    Ticks fire in due-time order; ties fire in registration order. When a
    ManualClock is attached it is moved to each tick's due time before the
    callback runs.
    """

    def __init__(self, clock: Optional[ManualClock] = None):
        self.clock = clock or ManualClock()
        self._entries: List[list] = []  # [due_time, seq, handle, callback]
        self._seq = 0

    def every(
        self, interval_seconds: float, callback: TickCallback, name: str = "task"
    ) -> TaskHandle:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        handle = TaskHandle(name, interval_seconds)
        self._entries.append([self.clock() + interval_seconds, self._seq, handle, callback])
        self._seq += 1
        return handle

    @property
    def pending(self) -> int:
        """Number of tasks that can still tick."""
        return sum(1 for e in self._entries if not e[2].cancelled)

    async def advance(self, seconds: float) -> int:
        """Move simulated time forward, running every tick that falls due. Returns ticks run."""
        target = self.clock() + seconds
        ran = 0
        while True:
            self._entries = [e for e in self._entries if not e[2].cancelled]
            due = [e for e in self._entries if e[0] <= target]
            if not due:
                break
            entry = min(due, key=lambda e: (e[0], e[1]))
            due_time, _, handle, callback = entry
            self.clock.set(max(due_time, self.clock()))
            entry[0] = due_time + handle.interval_seconds
            handle.ticks += 1
            ran += 1
            try:
                await _invoke(callback)
            except Exception:
                logger.exception("Periodic task %s failed on tick %d", handle.name, handle.ticks)
        self.clock.set(target)
        return ran
