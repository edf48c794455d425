"""Single-flight access-token refresh.

Any number of coroutines may call :meth:`RefreshCoordinator.refresh` at the
same time.  The first caller becomes the *owner* and performs the only network
call; everyone arriving while it is in flight is parked in a FIFO queue of
futures.  When the owner finishes, every parked caller is released in queue
order with the same outcome: the same new access token, or the same
:class:`~sps_admin.session.errors.RefreshFailedError`.

State is held per instance (no module globals), so two independent HTTP
clients never share a refresh flight.

Session generations
-------------------
:meth:`end_session` (called on logout) rejects parked callers with
:class:`~sps_admin.session.errors.SessionEndedError` and bumps a generation
counter.  A refresh response that arrives for an older generation is
discarded: it is neither persisted nor handed to callers.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from sps_admin.session import inspector
from sps_admin.session.clock import Clock, default_clock
from sps_admin.session.errors import RefreshFailedError, SessionEndedError, SessionError
from sps_admin.session.log_utils import log_security_event
from sps_admin.session.models import Credential
from sps_admin.session.store import TokenStore
from sps_admin.utils.logging import mask_sensitive

_LOG = logging.getLogger("sps-admin.session.coordinator")

RefreshCall = Callable[[str], Awaitable[Credential]]
FailureHook = Callable[[SessionError], Any]


class RefreshCoordinator:
    """Guarantee at most one in-flight refresh call per token store."""

    def __init__(
        self,
        store: TokenStore,
        refresh_call: RefreshCall,
        *,
        clock: Clock = default_clock,
        safety_margin: float = inspector.SAFETY_MARGIN_SECONDS,
        on_failure: FailureHook | None = None,
    ) -> None:
        self._store = store
        self._refresh_call = refresh_call
        self._clock = clock
        self._safety_margin = safety_margin
        self.on_failure = on_failure

        self._refreshing = False
        self._queue: list[asyncio.Future[str]] = []
        self._generation = 0
        self.refresh_count = 0

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    @property
    def pending(self) -> int:
        """Number of callers parked behind the in-flight refresh."""
        return len(self._queue)

    @property
    def generation(self) -> int:
        return self._generation

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #
    async def refresh(self) -> str:
        """Return a fresh access token, sharing one network call among concurrent callers."""
        if self._refreshing:
            future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
            self._queue.append(future)
            return await future

        self._refreshing = True
        generation = self._generation
        try:
            credential = await self._perform_refresh()
        except asyncio.CancelledError:
            if generation == self._generation:
                self._release(error=SessionEndedError("Token refresh cancelled."))
            raise
        except Exception as exc:
            if generation != self._generation:
                raise SessionEndedError("Session ended during token refresh.") from exc
            error = exc if isinstance(exc, RefreshFailedError) else RefreshFailedError(str(exc))
            self._release(error=error)
            log_security_event("token_refresh_failed", error=str(error))
            await self._notify_failure(error)
            if error is exc:
                raise
            raise error from exc

        if generation != self._generation:
            _LOG.info("Discarding refresh response that arrived after the session ended")
            raise SessionEndedError("Session ended during token refresh.")

        self._store.save_credential(credential)
        _LOG.debug("Stored refreshed access token %s", mask_sensitive(credential.access_token, 8))
        self._release(token=credential.access_token)
        log_security_event("token_refresh_success")
        return credential.access_token

    def begin_session(self) -> int:
        """Start a new session generation; in-flight responses become stale."""
        self._generation += 1
        return self._generation

    def cancel_pending(self, reason: str = "Session ended.") -> int:
        """Reject every parked caller with :class:`SessionEndedError`."""
        queue, self._queue = self._queue, []
        self._refreshing = False
        for future in queue:
            if not future.done():
                future.set_exception(SessionEndedError(reason))
        if queue:
            _LOG.debug("Rejected %d pending refresh caller(s): %s", len(queue), reason)
        return len(queue)

    def end_session(self, reason: str = "Session ended.") -> int:
        """Reject parked callers and invalidate any in-flight refresh.

        Returns the number of callers that were rejected.
        """
        self.begin_session()
        return self.cancel_pending(reason)

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #
    async def _perform_refresh(self) -> Credential:
        refresh_token = self._store.refresh_token()
        if not refresh_token:
            raise RefreshFailedError("Refresh token not found.")
        if inspector.is_expired(
            refresh_token, clock=self._clock, safety_margin=self._safety_margin
        ):
            raise RefreshFailedError("Refresh token expired.")

        self.refresh_count += 1
        log_security_event("token_refresh_attempt", attempt=self.refresh_count)
        credential = await self._refresh_call(refresh_token)

        if inspector.is_expired(
            credential.access_token, clock=self._clock, safety_margin=self._safety_margin
        ):
            raise RefreshFailedError("New access token is already expired.")
        return credential

    def _release(self, *, token: str | None = None, error: BaseException | None = None) -> None:
        queue, self._queue = self._queue, []
        self._refreshing = False
        for future in queue:  # FIFO
            if future.done():
                continue
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(token or "")

    async def _notify_failure(self, error: SessionError) -> None:
        if self.on_failure is None:
            return
        try:
            result = self.on_failure(error)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _LOG.exception("Refresh failure hook raised")
