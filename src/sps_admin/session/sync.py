"""Cross-context ("cross-tab") session reconciliation.

Two external signals are observed:

1. Storage changes made by *other* contexts on the ``token``/``user`` keys.
2. ``auth:logout`` broadcasts on the session event bus.

The synchronizer only reconciles local state with what storage says.  It
never performs a network call and never writes storage, so two contexts
cannot ping-pong each other.
"""

from __future__ import annotations

from typing import Any, Callable, Final, Mapping, Protocol

from sps_admin.session.bus import SessionEventBus
from sps_admin.session.log_utils import get_session_logger, log_security_event
from sps_admin.session.models import (
    LOGOUT_EVENT,
    TOKEN_KEY,
    USER_KEY,
    LogoutEvent,
    StorageChange,
    user_id_of,
)
from sps_admin.session.scheduler import Scheduler, TimerHandle
from sps_admin.session.store import TokenStore

ENDED_ELSEWHERE_MESSAGE: Final[str] = "Session ended in another tab"

_WATCHED_KEYS: Final[frozenset[str]] = frozenset({TOKEN_KEY, USER_KEY})


class SessionHost(Protocol):
    """Callbacks the synchronizer drives on the owning orchestrator."""

    def current_user(self) -> Mapping[str, Any] | None: ...
    def end_local_session(self, message: str) -> None: ...
    def adopt_session(self, user: Mapping[str, Any]) -> None: ...
    def recheck_expiry(self) -> None: ...


class CrossTabSynchronizer:
    """Keep one context consistent with changes made by its siblings."""

    def __init__(
        self,
        store: TokenStore,
        bus: SessionEventBus,
        host: SessionHost,
        *,
        scheduler: Scheduler | None = None,
        poll_interval: float = 0.0,
    ) -> None:
        self._store = store
        self._bus = bus
        self._host = host
        self._scheduler = scheduler
        self._poll_interval = poll_interval
        self._unsubscribers: list[Callable[[], None]] = []
        self._poll_timer: TimerHandle | None = None
        self._log = get_session_logger(
            base_logger_name="sps-admin.session.sync", context_id=store.context_id
        )

    @property
    def started(self) -> bool:
        return bool(self._unsubscribers)

    def start(self) -> None:
        if self.started:
            return
        self._unsubscribers.append(
            self._store.area.subscribe(self.handle_storage_change, context_id=self._store.context_id)
        )
        self._unsubscribers.append(self._bus.subscribe(self.handle_bus_event))
        self._arm_poll()

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None

    # ------------------------------------------------------------------ #
    # Polling (storage areas without push notifications)                 #
    # ------------------------------------------------------------------ #
    def _arm_poll(self) -> None:
        poll = getattr(self._store.area, "poll", None)
        if self._scheduler is None or self._poll_interval <= 0 or poll is None:
            return

        def _tick() -> None:
            if not self.started:
                return
            poll()
            self._arm_poll()

        self._poll_timer = self._scheduler.schedule(self._poll_interval, _tick)

    # ------------------------------------------------------------------ #
    # Signal handlers                                                    #
    # ------------------------------------------------------------------ #
    def handle_storage_change(self, change: StorageChange) -> None:
        if change.key not in _WATCHED_KEYS:
            return
        if change.source is not None and change.source == self._store.context_id:
            return

        token = self._store.access_token()
        user = self._store.user()
        local_user = self._host.current_user()

        if not token or not user:
            if local_user is None:
                return
            self._log.info("Session keys cleared by another context")
            log_security_event("session_ended_elsewhere", user_id=user_id_of(local_user))
            self._host.end_local_session(ENDED_ELSEWHERE_MESSAGE)
            return

        if user_id_of(user) != user_id_of(local_user):
            self._log.info("Session identity changed by another context")
            self._host.adopt_session(user)
            return

        # same user, token rotated elsewhere
        self._host.recheck_expiry()

    def handle_bus_event(self, event: Any) -> None:
        if not isinstance(event, LogoutEvent) or event.name != LOGOUT_EVENT:
            return
        if event.source is not None and event.source == self._store.context_id:
            return
        local_user = self._host.current_user()
        if local_user is None or event.user_id != user_id_of(local_user):
            return
        log_security_event(
            "logout_from_other_tab",
            user_id=event.user_id,
            timestamp=event.timestamp,
        )
        self._host.end_local_session(ENDED_ELSEWHERE_MESSAGE)
