"""Session event bus used for same-origin broadcasts (``auth:logout``).

The contract is deliberately small: ``publish(event)`` delivers *event* to
every live subscriber in subscription order (FIFO), at least once.  A failing
subscriber is logged and skipped; it never prevents delivery to the others nor
propagates to the publisher.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol, runtime_checkable

_LOG = logging.getLogger("sps-admin.session.bus")

EventHandler = Callable[[Any], None]


@runtime_checkable
class SessionEventBus(Protocol):
    """Publish/subscribe contract for session-wide notifications."""

    def publish(self, event: Any) -> None: ...

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register *handler*; return a callable that unregisters it."""
        ...


class InMemoryEventBus:
    """Synchronous in-process bus shared by contexts of one origin."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def publish(self, event: Any) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                _LOG.exception(
                    "Session event handler failed for event=%s",
                    getattr(event, "name", type(event).__name__),
                )

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers.remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def __len__(self) -> int:
        return len(self._handlers)
