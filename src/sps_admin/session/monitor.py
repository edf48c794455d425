"""Session monitor: expiry countdown, warnings and inactivity detection.

Timers (all owned by one :class:`~sps_admin.session.scheduler.TimerGroup`):

``poll``
    Every ``check_interval`` seconds (30 s) re-run :meth:`check_token_expiry`.
``warning``
    Armed precisely at ``time_remaining - warning_threshold`` so the
    "about to expire" warning fires once at the threshold instead of on the
    next poll.
``expiry``
    Armed at ``time_remaining``; forces logout when it fires.
``inactivity``
    Re-armed to ``session_timeout`` (30 min) on every accepted activity event.
``grace``
    Armed when the user goes inactive; forces logout after
    ``inactivity_grace`` unless activity or :meth:`extend_session` comes first.

:meth:`stop` cancels every timer, so nothing fires against a cleared token.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Final, Mapping

from sps_admin.config import SessionConfig
from sps_admin.session import inspector
from sps_admin.session.coordinator import RefreshCoordinator
from sps_admin.session.errors import SessionError, SessionInactiveError
from sps_admin.session.log_utils import get_session_logger, log_security_event
from sps_admin.session.models import MonitorState, user_id_of
from sps_admin.session.scheduler import Scheduler, TimerGroup
from sps_admin.session.store import TokenStore

ACTIVITY_EVENTS: Final[frozenset[str]] = frozenset(
    {
        "mousedown",
        "mousemove",
        "keypress",
        "scroll",
        "touchstart",
        "click",
        "focus",
        "visibilitychange",
    }
)

SESSION_EXPIRED_MESSAGE: Final[str] = "Session expired"

ForcedLogout = Callable[[str], Awaitable[None]]


class SessionMonitor:
    """Track token time-remaining and user activity for one context."""

    def __init__(
        self,
        store: TokenStore,
        coordinator: RefreshCoordinator,
        scheduler: Scheduler,
        *,
        config: SessionConfig | None = None,
        on_forced_logout: ForcedLogout | None = None,
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._scheduler = scheduler
        self._config = config or SessionConfig()
        self.on_forced_logout = on_forced_logout
        self._timers = TimerGroup(scheduler)
        self._log = get_session_logger(
            base_logger_name="sps-admin.session.monitor", context_id=store.context_id
        )

        self.running = False
        self.time_remaining: int = 0
        self.warning = False
        self.near_expiry = False
        self.expired = False
        self.inactive = False
        self.error: str | None = None
        self.last_activity: float = scheduler.now()
        self._warned_token: str | None = None
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #
    def start(self) -> None:
        """Begin monitoring the stored session."""
        self.running = True
        self.expired = False
        self.inactive = False
        self.error = None
        self._arm_poll()
        self._reset_inactivity()
        self.check_token_expiry()

    def stop(self) -> None:
        """Cancel every timer and reset derived state."""
        self._timers.cancel_all()
        self.running = False
        self.time_remaining = 0
        self.warning = False
        self.near_expiry = False
        self.inactive = False
        self._warned_token = None

    @property
    def armed_timers(self) -> int:
        return len(self._timers)

    @property
    def state(self) -> MonitorState:
        if self.expired:
            return MonitorState.EXPIRED
        if self.inactive:
            return MonitorState.INACTIVE
        if self.warning:
            return MonitorState.EXPIRING_WARNING
        if self.near_expiry:
            return MonitorState.NEAR_EXPIRY
        return MonitorState.VALID

    def _user(self) -> Mapping[str, Any] | None:
        return self._store.user()

    # ------------------------------------------------------------------ #
    # Expiry                                                             #
    # ------------------------------------------------------------------ #
    def _arm_poll(self) -> None:
        def _tick() -> None:
            if not self.running:
                return
            self._arm_poll()
            self.check_token_expiry()

        self._timers.arm("poll", self._config.check_interval, _tick)

    def check_token_expiry(self) -> MonitorState:
        """Recompute time remaining and (re-)arm the warning/expiry timers."""
        if not self.running:
            return self.state
        token = self._store.access_token()
        remaining = inspector.time_remaining(
            token, clock=self._scheduler, safety_margin=self._config.safety_margin
        )
        self.time_remaining = remaining
        self._timers.cancel("warning")
        self._timers.cancel("expiry")

        if remaining <= 0:
            self._expire()
            return self.state

        warning_ms = self._config.warning_threshold * 1000
        self.near_expiry = inspector.is_near_expiry(
            token,
            clock=self._scheduler,
            threshold=self._config.near_expiry_threshold,
            safety_margin=self._config.safety_margin,
        )
        if remaining <= warning_ms:
            self._raise_warning(token, remaining)
        else:
            self.warning = False
            self._timers.arm(
                "warning",
                (remaining - warning_ms) / 1000,
                lambda: self._raise_warning(token, int(warning_ms)),
            )
        self._timers.arm("expiry", remaining / 1000, self._on_expiry_timer)
        return self.state

    def _raise_warning(self, token: str | None, remaining: int) -> None:
        self.warning = True
        self.near_expiry = True
        if token == self._warned_token:
            return
        self._warned_token = token
        log_security_event(
            "session_warning", user_id=user_id_of(self._user()), time_remaining=remaining
        )

    def _on_expiry_timer(self) -> Awaitable[None] | None:
        # the token may have been renewed elsewhere since the timer was armed
        if inspector.time_remaining(
            self._store.access_token(),
            clock=self._scheduler,
            safety_margin=self._config.safety_margin,
        ) > 0:
            self.check_token_expiry()
            return None
        return self._expire()

    def _expire(self) -> Awaitable[None] | None:
        self.expired = True
        self.time_remaining = 0
        self.error = SESSION_EXPIRED_MESSAGE
        log_security_event("session_expired", user_id=user_id_of(self._user()))
        return self._force_logout(SESSION_EXPIRED_MESSAGE)

    # ------------------------------------------------------------------ #
    # Activity                                                           #
    # ------------------------------------------------------------------ #
    def record_activity(self, event_type: str = "click") -> bool:
        """Register a user-interaction event; unknown event types are ignored."""
        if event_type not in ACTIVITY_EVENTS or not self.running:
            return False
        self._reset_inactivity()
        return True

    def _reset_inactivity(self) -> None:
        self.last_activity = self._scheduler.now()
        self.inactive = False
        self._timers.cancel("grace")
        self._timers.arm("inactivity", self._config.session_timeout, self._on_inactive)

    def _on_inactive(self) -> None:
        self.inactive = True
        log_security_event("user_inactive", user_id=user_id_of(self._user()))
        self._timers.arm("grace", self._config.inactivity_grace, self._on_grace_elapsed)

    def _on_grace_elapsed(self) -> Awaitable[None] | None:
        message = str(SessionInactiveError())
        self.error = message
        log_security_event("session_timeout", user_id=user_id_of(self._user()))
        return self._force_logout(message)

    # ------------------------------------------------------------------ #
    # User actions                                                       #
    # ------------------------------------------------------------------ #
    async def renew_session(self) -> str:
        """Refresh the token now; reset the expiry schedule on success.

        Raises:
            SessionError: If the refresh fails; ``error`` is set first.
        """
        user_id = user_id_of(self._user())
        self.error = None
        log_security_event("session_renewal_attempt", user_id=user_id)
        try:
            token = await self._coordinator.refresh()
        except SessionError as exc:
            self.error = str(exc)
            log_security_event("session_renewal_failed", user_id=user_id, error=str(exc))
            raise
        self.warning = False
        self._warned_token = None
        if self.running:
            self._reset_inactivity()
            self.check_token_expiry()
        log_security_event("session_renewal_success", user_id=user_id)
        return token

    def extend_session(self) -> None:
        """Dismiss the warning/inactive state without contacting the server."""
        self.warning = False
        self.error = None
        if self.running:
            self._reset_inactivity()
        log_security_event("session_extended", user_id=user_id_of(self._user()))

    def _force_logout(self, message: str) -> Awaitable[None] | None:
        self._timers.cancel_all()
        self.running = False
        if self.on_forced_logout is None:
            self._log.warning("Forced logout requested without a handler: %s", message)
            return None
        result = self.on_forced_logout(message)
        if not inspect.isawaitable(result):
            return None
        task = asyncio.ensure_future(result)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for forced-logout tasks spawned by synchronous checks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
