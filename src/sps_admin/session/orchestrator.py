"""Top-level authentication state machine for one client context.

``AuthOrchestrator`` owns and wires the session components::

    httpx.AsyncClient ── RetryTransport ── (real transport)
        │ auth = SessionAuth ──► RefreshCoordinator ──► AuthApi.refresh
        ▼
    ApiClient (application requests)

    SessionMonitor ─┐
    SessionAuth  ───┼─► force_logout(message)
    RefreshCoordinator ┘

    CrossTabSynchronizer ◄── StorageArea changes / SessionEventBus

States move ``uninitialized → loading → {authenticated, anonymous}`` and
``authenticated → anonymous`` on logout; only a fresh :meth:`login` returns to
``authenticated``.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Final, Mapping

import httpx

from sps_admin.config import SessionConfig
from sps_admin.session import inspector
from sps_admin.session.api import AuthApi
from sps_admin.session.bus import InMemoryEventBus, SessionEventBus
from sps_admin.session.clock import now_ms
from sps_admin.session.coordinator import RefreshCoordinator
from sps_admin.session.errors import (
    HttpError,
    SessionEndedError,
    SessionError,
)
from sps_admin.session.log_utils import get_session_logger, log_security_event
from sps_admin.session.middleware import (
    API_VERSION_HEADER,
    ApiClient,
    RetryTransport,
    SessionAuth,
)
from sps_admin.session.models import (
    AuthState,
    LoginResult,
    LogoutEvent,
    Session,
    essential_user,
    user_id_of,
)
from sps_admin.session.monitor import SessionMonitor
from sps_admin.session.scheduler import AsyncioScheduler, Scheduler
from sps_admin.session.storage import DiskStorageArea, MemoryStorageArea, StorageArea
from sps_admin.session.store import TokenStore
from sps_admin.session.sync import CrossTabSynchronizer


MIN_PASSWORD_LENGTH: Final[int] = 4
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

INVALID_EMAIL_MESSAGE: Final[str] = "Enter a valid e-mail address."
INVALID_PASSWORD_MESSAGE: Final[str] = (
    f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
)
BAD_RESPONSE_MESSAGE: Final[str] = "Unexpected response from the server."
EXPIRED_TOKEN_MESSAGE: Final[str] = "The server issued an expired token."


def default_storage(config: SessionConfig) -> StorageArea:
    """Disk-backed storage when ``storage_dir`` is configured, memory otherwise."""
    if config.storage_dir is not None:
        return DiskStorageArea(config.origin, config.storage_dir)
    return MemoryStorageArea()


class AuthOrchestrator:
    """Coordinate login, logout, renewal and cross-context sync for one context."""

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        storage: StorageArea | None = None,
        bus: SessionEventBus | None = None,
        scheduler: Scheduler | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        context_id: str | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        self.bus: SessionEventBus = bus if bus is not None else InMemoryEventBus()
        self.store = TokenStore(
            storage if storage is not None else default_storage(self.config),
            context_id=context_id,
        )

        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            transport=RetryTransport(
                transport,
                max_retries=self.config.max_network_retries,
                base_delay=self.config.retry_base_delay,
                sleep=self.scheduler.sleep,
            ),
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                API_VERSION_HEADER: self.config.api_version,
            },
            timeout=self.config.timeout,
        )
        self.auth_api = AuthApi(self._client, self.config)
        self.coordinator = RefreshCoordinator(
            self.store,
            self.auth_api.refresh,
            clock=self.scheduler,
            safety_margin=self.config.safety_margin,
            on_failure=self._on_refresh_failure,
        )
        self._client.auth = SessionAuth(
            self.store,
            self.coordinator,
            logout_path=self.config.logout_path,
            clock=self.scheduler,
            safety_margin=self.config.safety_margin,
            on_expired=self.force_logout,
            api_version=self.config.api_version,
        )
        self._api = ApiClient(self._client, sanitize=self.config.sanitize_payloads)
        self.monitor = SessionMonitor(
            self.store,
            self.coordinator,
            self.scheduler,
            config=self.config,
            on_forced_logout=self.force_logout,
        )
        self.sync = CrossTabSynchronizer(
            self.store,
            self.bus,
            self,
            scheduler=self.scheduler,
            poll_interval=self.config.storage_poll_interval,
        )

        self.state = AuthState.UNINITIALIZED
        self.loading = False
        self._user: dict[str, Any] | None = None
        self._error: str | None = None
        self._logout_lock = asyncio.Lock()
        self._log = get_session_logger(
            base_logger_name="sps-admin.session.orchestrator",
            context_id=self.store.context_id,
        )

    async def __aenter__(self) -> "AuthOrchestrator":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Read-only views                                                    #
    # ------------------------------------------------------------------ #
    @property
    def context_id(self) -> str:
        return self.store.context_id

    @property
    def api(self) -> ApiClient:
        return self._api

    @property
    def user(self) -> dict[str, Any] | None:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED

    @property
    def session(self) -> Session:
        """Snapshot of the derived session state."""
        user = self._user
        remaining = 0
        if user is not None:
            remaining = inspector.time_remaining(
                self.store.access_token(),
                clock=self.scheduler,
                safety_margin=self.config.safety_margin,
            )
        return Session(
            has_user=user is not None,
            time_remaining=remaining,
            is_inactive=self.monitor.inactive,
            is_refreshing=self.coordinator.is_refreshing,
            error=self._error or (self.monitor.error if user is not None else None),
            user=user,
            state=self.state,
            monitor_state=self.monitor.state if user is not None else None,
            warning=self.monitor.warning,
            near_expiry=self.monitor.near_expiry,
        )

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #
    async def initialize(self) -> AuthState:
        """Restore a persisted session, if any, and start cross-context sync."""
        self.state = AuthState.LOADING
        self.loading = True
        self.sync.start()
        try:
            user = self.store.user()
            token = self.store.access_token()
            if user is None or not token:
                self.state = AuthState.ANONYMOUS
                return self.state
            if inspector.is_expired(
                token, clock=self.scheduler, safety_margin=self.config.safety_margin
            ):
                log_security_event("token_expired", user_id=user_id_of(user))
                self.store.clear()
                self.state = AuthState.ANONYMOUS
                return self.state

            self._user = essential_user(user)
            self._error = None
            self.coordinator.begin_session()
            self.state = AuthState.AUTHENTICATED
            self.monitor.start()
            self._log.info("Restored persisted session")
            await self.refresh_token()
            return self.state
        finally:
            self.loading = False

    async def aclose(self) -> None:
        """Stop timers and listeners and close the HTTP client; storage is kept."""
        self.sync.stop()
        self.monitor.stop()
        await self.monitor.wait_idle()
        await self._client.aclose()

    async def wait_idle(self) -> None:
        """Wait for background forced-logout tasks to settle."""
        await self.monitor.wait_idle()

    # ------------------------------------------------------------------ #
    # Login / logout                                                     #
    # ------------------------------------------------------------------ #
    async def login(self, email: str, password: str) -> LoginResult:
        email = (email or "").strip()
        if not _EMAIL_RE.match(email):
            return LoginResult(ok=False, error=INVALID_EMAIL_MESSAGE)
        if len(password or "") < MIN_PASSWORD_LENGTH:
            return LoginResult(ok=False, error=INVALID_PASSWORD_MESSAGE)

        log_security_event("login_attempt")
        try:
            user, credential = await self.auth_api.login(email, password)
        except HttpError as exc:
            log_security_event("login_failed", status=exc.status_code)
            return LoginResult(ok=False, error=str(exc), status_code=exc.status_code)
        except SessionError as exc:
            log_security_event("login_failed", error=str(exc))
            return LoginResult(ok=False, error=str(exc))
        except ValueError as exc:
            self._log.warning("Malformed login response: %s", exc)
            return LoginResult(ok=False, error=BAD_RESPONSE_MESSAGE)

        if inspector.is_expired(
            credential.access_token,
            clock=self.scheduler,
            safety_margin=self.config.safety_margin,
        ):
            log_security_event("login_failed", error="expired_token_issued")
            return LoginResult(ok=False, error=EXPIRED_TOKEN_MESSAGE)

        self.coordinator.begin_session()
        self.store.save_credential(credential)
        self.store.save_user(user)
        self._user = essential_user(user)
        self._error = None
        self.state = AuthState.AUTHENTICATED
        self.monitor.start()
        log_security_event("login_success", user_id=user_id_of(self._user))
        return LoginResult(ok=True, user=self._user)

    async def logout(self) -> None:
        """End the session locally and (best-effort) on the server.

        Safe to call repeatedly; concurrent calls are serialised.
        """
        async with self._logout_lock:
            user = self._user or self.store.user()
            had_token = self.store.access_token() is not None
            if user is None and self.store.is_empty():
                self.monitor.stop()
                self.state = AuthState.ANONYMOUS
                return

            user_id = user_id_of(user)
            self.monitor.stop()
            self.coordinator.end_session("Logged out.")

            if had_token:
                try:
                    await self.auth_api.logout()
                except (SessionError, httpx.HTTPError) as exc:
                    self._log.warning("Server-side logout failed: %s", exc)

            self.store.clear()
            self._user = None
            self._error = None
            self.state = AuthState.ANONYMOUS
            self.bus.publish(
                LogoutEvent(
                    user_id=user_id,
                    timestamp=now_ms(self.scheduler),
                    source=self.store.context_id,
                )
            )
            log_security_event("logout_complete", user_id=user_id)

    async def force_logout(self, message: str) -> None:
        """Log out and keep *message* as the session error shown to the user."""
        log_security_event("forced_logout", reason=message)
        await self.logout()
        self._error = message

    # ------------------------------------------------------------------ #
    # Renewal                                                            #
    # ------------------------------------------------------------------ #
    async def renew_session(self) -> bool:
        """Refresh the token now. ``False`` (and logout) on failure."""
        if self._user is None:
            return False
        try:
            await self.monitor.renew_session()
        except SessionError as exc:
            await self._after_refresh_failure(exc)
            return False
        self._error = None
        return True

    async def refresh_token(self) -> str | None:
        """Refresh when the access token is inside the warning window.

        Returns the current (possibly new) access token, or ``None`` when there
        is no session or the refresh failed.
        """
        token = self.store.access_token()
        if self._user is None or not token:
            return None
        remaining = inspector.time_remaining(
            token, clock=self.scheduler, safety_margin=self.config.safety_margin
        )
        if remaining > self.config.warning_threshold * 1000:
            return token
        try:
            new_token = await self.coordinator.refresh()
        except SessionError as exc:
            await self._after_refresh_failure(exc)
            return None
        self.monitor.check_token_expiry()
        return new_token

    def extend_session(self) -> None:
        self._error = None
        self.monitor.extend_session()

    def record_activity(self, event_type: str = "click") -> bool:
        return self.monitor.record_activity(event_type)

    async def _on_refresh_failure(self, error: SessionError) -> None:
        await self.force_logout(str(error))

    async def _after_refresh_failure(self, error: SessionError) -> None:
        if isinstance(error, SessionEndedError):
            return
        if self.state is AuthState.AUTHENTICATED:
            await self.force_logout(str(error))

    # ------------------------------------------------------------------ #
    # Cross-context host callbacks                                       #
    # ------------------------------------------------------------------ #
    def current_user(self) -> Mapping[str, Any] | None:
        return self._user

    def end_local_session(self, message: str) -> None:
        """End this context's session without network calls or storage writes."""
        if self._user is None:
            return
        self.monitor.stop()
        self.coordinator.end_session(message)
        self._user = None
        self._error = message
        self.state = AuthState.ANONYMOUS

    def adopt_session(self, user: Mapping[str, Any]) -> None:
        self.coordinator.begin_session()
        self._user = essential_user(user)
        self._error = None
        self.state = AuthState.AUTHENTICATED
        if self.monitor.running:
            self.monitor.check_token_expiry()
        else:
            self.monitor.start()

    def recheck_expiry(self) -> None:
        if self.monitor.running:
            self.monitor.check_token_expiry()
