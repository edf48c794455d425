"""Clock abstraction for testable time handling in session logic.

This module defines a `Clock` protocol representing callables that return the
current UNIX timestamp as ``float``.  Every expiry and inactivity decision
inside the ``sps_admin.session`` package MUST depend on an injected ``Clock``
instance rather than calling ``time.time()`` directly, so that a
:class:`~sps_admin.session.scheduler.VirtualScheduler` can drive the whole
subsystem through fast-forwarded time.

Example
-------
>>> from sps_admin.session.clock import default_clock, now_ms
>>> isinstance(default_clock(), float)
True
>>> isinstance(now_ms(), int)
True
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable protocol returning *seconds* since the UNIX epoch."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Default implementation that delegates to ``time.time()``.

    Returns
    -------
    float
        Seconds since the UNIX epoch.
    """
    return time.time()


def now_ms(clock: Clock = default_clock) -> int:
    """Return the clock reading in whole milliseconds."""
    return int(clock() * 1000)
