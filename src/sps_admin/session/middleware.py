"""Request middleware: bearer injection, 401 replay, network retry.

Three pieces plug into one ``httpx.AsyncClient``:

:class:`SessionAuth`
    ``httpx.Auth`` flow run around every request.

    * Before send: stamps ``X-Request-Timestamp`` and attaches
      ``Authorization: Bearer <token>``.  An access token past its
      safety-margin expiry never reaches the network: it is renewed through
      the :class:`~sps_admin.session.coordinator.RefreshCoordinator` when a
      usable refresh token exists, otherwise the request fails with
      :class:`~sps_admin.session.errors.TokenExpiredError` and the expiry hook
      (forced logout) fires.  The logout call is the exception and always
      goes out with whatever token is stored.
    * On 401: refresh once and replay the request with the new token.  A
      second 401 is returned to the caller unchanged.

:class:`RetryTransport`
    Wraps the real transport.  When no response is received
    (``httpx.TransportError``) the request is retried with exponential
    backoff (2s, 4s, 8s by default) through a per-request
    ``tenacity.AsyncRetrying`` and the final failure is raised as
    :class:`~sps_admin.session.errors.NetworkError`.  Responses, whatever
    their status, are never retried here.

:class:`ApiClient`
    Façade used by application code; sanitises JSON payloads and converts
    4xx/5xx responses into :class:`~sps_admin.session.errors.HttpError`.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from typing import Any, AsyncGenerator, Callable, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sps_admin.session import inspector
from sps_admin.session.api import RETRY_EXTENSION, http_error_from
from sps_admin.session.clock import Clock, default_clock, now_ms
from sps_admin.session.coordinator import RefreshCoordinator
from sps_admin.session.errors import NetworkError, TokenExpiredError
from sps_admin.session.log_utils import log_security_event
from sps_admin.session.scheduler import SleepFunc
from sps_admin.session.store import TokenStore

_LOG = logging.getLogger("sps-admin.session.middleware")

API_VERSION_HEADER: Final[str] = "X-API-Version"
TIMESTAMP_HEADER: Final[str] = "X-Request-Timestamp"

_MARKUP_RE = re.compile(r"[<>]")
_SCRIPT_SCHEME_RE = re.compile(r"javascript:", re.IGNORECASE)
_INLINE_HANDLER_RE = re.compile(r"on\w+=", re.IGNORECASE)


def sanitize_payload(value: Any) -> Any:
    """Strip markup and inline script vectors from every string in *value*."""
    if isinstance(value, str):
        value = _MARKUP_RE.sub("", value)
        value = _SCRIPT_SCHEME_RE.sub("", value)
        value = _INLINE_HANDLER_RE.sub("", value)
        return value.strip()
    if isinstance(value, dict):
        return {k: sanitize_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_payload(v) for v in value]
    return value


# --------------------------------------------------------------------------- #
# Auth flow                                                                   #
# --------------------------------------------------------------------------- #
class SessionAuth(httpx.Auth):
    """Attach and renew the session bearer token around each request."""

    requires_response_body = False

    def __init__(
        self,
        store: TokenStore,
        coordinator: RefreshCoordinator,
        *,
        logout_path: str = "/auth/logout",
        clock: Clock = default_clock,
        safety_margin: float = inspector.SAFETY_MARGIN_SECONDS,
        on_expired: Callable[[str], Any] | None = None,
        api_version: str | None = None,
    ) -> None:
        self._api_version = api_version
        self._store = store
        self._coordinator = coordinator
        self._logout_path = logout_path.rstrip("/")
        self._clock = clock
        self._safety_margin = safety_margin
        self.on_expired = on_expired

    def sync_auth_flow(self, request: httpx.Request):  # pragma: no cover
        raise RuntimeError("SessionAuth requires httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        request.headers[TIMESTAMP_HEADER] = str(now_ms(self._clock))
        if self._api_version and API_VERSION_HEADER not in request.headers:
            request.headers[API_VERSION_HEADER] = self._api_version
        is_logout = self._is_logout(request)

        token = await self._token_for(request, is_logout=is_logout)
        if token:
            request.headers["Authorization"] = f"Bearer {token}"

        response = yield request

        if response.status_code != 401 or is_logout or not token:
            return

        log_security_event(
            "token_refresh_on_401", method=request.method, url=request.url.path
        )
        new_token = await self._coordinator.refresh()
        request.headers["Authorization"] = f"Bearer {new_token}"
        # replayed at most once; a second 401 is surfaced as-is
        yield request

    def _is_logout(self, request: httpx.Request) -> bool:
        return request.url.path.rstrip("/").endswith(self._logout_path)

    async def _token_for(self, request: httpx.Request, *, is_logout: bool) -> str | None:
        token = self._store.access_token()
        if not token or is_logout:
            return token
        if not inspector.is_expired(token, clock=self._clock, safety_margin=self._safety_margin):
            return token

        refresh_token = self._store.refresh_token()
        if refresh_token and not inspector.is_expired(
            refresh_token, clock=self._clock, safety_margin=self._safety_margin
        ):
            _LOG.debug("Access token expired before send, refreshing first")
            return await self._coordinator.refresh()

        log_security_event(
            "request_with_expired_token", method=request.method, url=request.url.path
        )
        await self._signal_expired("Session expired.")
        raise TokenExpiredError()

    async def _signal_expired(self, message: str) -> None:
        if self.on_expired is None:
            return
        try:
            result = self.on_expired(message)
            if inspect.isawaitable(result):
                await result
        except Exception:
            _LOG.exception("Expiry hook raised")


# --------------------------------------------------------------------------- #
# Transport                                                                   #
# --------------------------------------------------------------------------- #
class RetryTransport(httpx.AsyncBaseTransport):
    """Retry requests that received no response, with exponential backoff."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        *,
        max_retries: int = 3,
        base_delay: float = 2.0,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self._transport = transport or httpx.AsyncHTTPTransport()
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

    def _retrying(self, request: httpx.Request) -> AsyncRetrying:
        # a fresh controller per request keeps the attempt count request-local
        retry_enabled = request.extensions.get(RETRY_EXTENSION, True)
        attempts = self.max_retries + 1 if retry_enabled else 1

        def _log_retry(retry_state: RetryCallState) -> None:
            log_security_event(
                "network_retry",
                retry_count=retry_state.attempt_number,
                delay=retry_state.next_action.sleep if retry_state.next_action else None,
                url=request.url.path,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self.base_delay),
            retry=retry_if_exception_type(httpx.TransportError),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=True,
        )

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        attempt_number = 0
        try:
            async for attempt in self._retrying(request):
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    response = await self._transport.handle_async_request(request)
        except httpx.TransportError as exc:
            log_security_event(
                "network_error",
                method=request.method,
                url=request.url.path,
                attempts=attempt_number,
            )
            raise NetworkError(
                f"No response from {request.url.host}: {type(exc).__name__}",
                attempts=attempt_number,
            ) from exc
        return response

    async def aclose(self) -> None:
        await self._transport.aclose()


# --------------------------------------------------------------------------- #
# Application façade                                                          #
# --------------------------------------------------------------------------- #
class ApiClient:
    """Issue application requests through the session-aware client."""

    def __init__(self, client: httpx.AsyncClient, *, sanitize: bool = True) -> None:
        self._client = client
        self._sanitize = sanitize

    @property
    def http(self) -> httpx.AsyncClient:
        return self._client

    async def request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if self._sanitize and kwargs.get("json") is not None:
            kwargs["json"] = sanitize_payload(kwargs["json"])
        response = await self._client.request(method, url, **kwargs)
        _LOG.debug("%s %s -> %s", method.upper(), url, response.status_code)
        if response.is_error:
            error = http_error_from(response)
            status = response.status_code
            if status == 401:
                log_security_event("api_error_unauthorized", method=method, url=url)
            elif status == 403:
                log_security_event("api_error_forbidden", method=method, url=url)
            elif status >= 500:
                log_security_event("api_error_server", method=method, url=url, status=status)
            raise error
        return response

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def patch(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("PATCH", url, **kwargs)

    async def delete(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)
