"""Client for the three authentication endpoints of the admin REST service.

Wire shapes::

    POST /auth/login   {email, password}  -> {user, accessToken, refreshToken}
    POST /auth/refresh {refreshToken}     -> {accessToken, refreshToken}
    POST /auth/logout                     -> 2xx

Older servers answer with ``token`` instead of ``accessToken``; both are
accepted.  Login and refresh are sent **without** the session auth flow (no
bearer, no 401 replay).  Logout goes through it so the stale token is still
presented, but is never retried on network errors.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from sps_admin.config import SessionConfig
from sps_admin.session.errors import HttpError, user_message_for
from sps_admin.session.models import Credential

_LOG = logging.getLogger("sps-admin.session.api")

# Request extension read by RetryTransport; False disables network retries
RETRY_EXTENSION = "sps_admin.retry"


def _server_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        return str(message) if message else None
    return None


def http_error_from(response: httpx.Response) -> HttpError:
    """Build an :class:`HttpError` describing *response*."""
    request = response.request
    return HttpError(
        response.status_code,
        user_message=user_message_for(response.status_code),
        method=request.method,
        url=str(request.url),
        detail=_server_message(response),
    )


def parse_credential(data: Any) -> Credential:
    """Extract the token pair from a login/refresh body; ``ValueError`` if absent."""
    if not isinstance(data, dict):
        raise ValueError("auth response is not a JSON object")
    access = data.get("accessToken") or data.get("token")
    refresh = data.get("refreshToken")
    if not access or not isinstance(access, str):
        raise ValueError("auth response missing accessToken")
    if not refresh or not isinstance(refresh, str):
        raise ValueError("auth response missing refreshToken")
    return Credential(access_token=access, refresh_token=refresh)


class AuthApi:
    """Thin wrapper over the auth endpoints."""

    def __init__(self, client: httpx.AsyncClient, config: SessionConfig) -> None:
        self._client = client
        self._config = config

    async def login(self, email: str, password: str) -> tuple[dict[str, Any], Credential]:
        response = await self._client.post(
            self._config.login_path,
            json={"email": email, "password": password},
            auth=None,
        )
        if response.is_error:
            raise http_error_from(response)
        data = response.json()
        credential = parse_credential(data)
        user = data.get("user")
        if not isinstance(user, dict):
            raise ValueError("login response missing user")
        return user, credential

    async def refresh(self, refresh_token: str) -> Credential:
        response = await self._client.post(
            self._config.refresh_path,
            json={"refreshToken": refresh_token},
            auth=None,
            timeout=self._config.refresh_timeout,
        )
        if response.is_error:
            raise http_error_from(response)
        return parse_credential(response.json())

    async def logout(self) -> None:
        response = await self._client.post(
            self._config.logout_path,
            extensions={RETRY_EXTENSION: False},
        )
        if response.is_error:
            raise http_error_from(response)
        _LOG.debug("Server-side logout acknowledged status=%s", response.status_code)
