"""Timer scheduling abstraction for the session monitor and retry backoff.

Components never call ``loop.call_later`` or ``asyncio.sleep`` directly.  They
receive a :class:`Scheduler` which offers three operations:

``now()``
    Current time in epoch seconds (a scheduler is also a valid
    :class:`~sps_admin.session.clock.Clock`).
``schedule(delay, callback)``
    Arm a one-shot timer; returns a :class:`TimerHandle` whose ``cancel()``
    guarantees the callback will not run.  Callbacks may be plain functions or
    return an awaitable, which is then run as a task.
``sleep(delay)``
    Suspend the current coroutine.

Two implementations are provided:

* :class:`AsyncioScheduler` – production, backed by the running event loop.
* :class:`VirtualScheduler` – deterministic virtual time for tests; time only
  moves through :meth:`VirtualScheduler.advance` (or a virtual ``sleep``,
  which fast-forwards the clock by the requested delay).
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from sps_admin.session.clock import Clock, default_clock

_LOG = logging.getLogger("sps-admin.session.scheduler")

TimerCallback = Callable[[], Any]


@runtime_checkable
class TimerHandle(Protocol):
    """Cancellable reference to an armed timer."""

    @property
    def cancelled(self) -> bool: ...

    def cancel(self) -> None: ...


@runtime_checkable
class Scheduler(Protocol):
    """Minimal timer contract used by the session components."""

    def __call__(self) -> float: ...

    def now(self) -> float: ...

    def schedule(self, delay: float, callback: TimerCallback) -> TimerHandle: ...

    async def sleep(self, delay: float) -> None: ...


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        _LOG.error("Timer callback failed: %s", exc, exc_info=exc)


# --------------------------------------------------------------------------- #
# asyncio implementation                                                      #
# --------------------------------------------------------------------------- #
class _LoopTimer:
    def __init__(self, handle: asyncio.TimerHandle) -> None:
        self._handle = handle

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()

    def cancel(self) -> None:
        self._handle.cancel()


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, clock: Clock = default_clock) -> None:
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()

    def __call__(self) -> float:
        return self._clock()

    def now(self) -> float:
        return self._clock()

    def schedule(self, delay: float, callback: TimerCallback) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = loop.call_later(max(0.0, delay), self._fire, callback)
        return _LoopTimer(handle)

    def _fire(self, callback: TimerCallback) -> None:
        try:
            result = callback()
        except Exception:
            _LOG.exception("Timer callback failed")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            task.add_done_callback(_log_task_failure)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(max(0.0, delay))


# --------------------------------------------------------------------------- #
# Virtual-time implementation                                                 #
# --------------------------------------------------------------------------- #
class _VirtualTimer:
    __slots__ = ("due", "callback", "_cancelled")

    def __init__(self, due: float, callback: TimerCallback) -> None:
        self.due = due
        self.callback = callback
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


class VirtualScheduler:
    """Deterministic scheduler whose time only moves when told to.

    Timers fire in due-time order (ties in arming order) while
    :meth:`advance` walks the clock forward.  ``sleep`` records the requested
    delay in :attr:`sleeps` and fast-forwards virtual time by that amount.
    """

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = float(start)
        self._heap: list[tuple[float, int, _VirtualTimer]] = []
        self._seq = itertools.count()
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self._now

    def now(self) -> float:
        return self._now

    def schedule(self, delay: float, callback: TimerCallback) -> TimerHandle:
        timer = _VirtualTimer(self._now + max(0.0, delay), callback)
        heapq.heappush(self._heap, (timer.due, next(self._seq), timer))
        return timer

    @property
    def pending(self) -> int:
        """Number of armed, non-cancelled timers."""
        return sum(1 for _, _, t in self._heap if not t.cancelled)

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        await self.advance(delay)

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward by *seconds*, firing due timers."""
        target = self._now + max(0.0, seconds)
        while self._heap and self._heap[0][0] <= target:
            due, _, timer = heapq.heappop(self._heap)
            if timer.cancelled:
                continue
            self._now = max(self._now, due)
            result = timer.callback()
            if inspect.isawaitable(result):
                await result
            # let tasks spawned by the callback make progress
            await asyncio.sleep(0)
        self._now = max(self._now, target)
        await asyncio.sleep(0)


# --------------------------------------------------------------------------- #
# Named timer bookkeeping                                                     #
# --------------------------------------------------------------------------- #
class TimerGroup:
    """Named one-shot timers that can be re-armed and cancelled together."""

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler
        self._timers: dict[str, TimerHandle] = {}

    def arm(self, name: str, delay: float, callback: TimerCallback) -> None:
        """(Re-)arm timer *name*; a previous timer with that name is cancelled."""
        self.cancel(name)

        def _run() -> Any:
            self._timers.pop(name, None)
            return callback()

        self._timers[name] = self._scheduler.schedule(delay, _run)

    def cancel(self, name: str) -> None:
        handle = self._timers.pop(name, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def is_armed(self, name: str) -> bool:
        return name in self._timers

    def __len__(self) -> int:
        return len(self._timers)


SleepFunc = Callable[[float], Awaitable[None]]
