"""Typed records used by the client session core."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Final, Mapping

# Storage keys shared by every context of an origin
TOKEN_KEY: Final[str] = "token"
REFRESH_TOKEN_KEY: Final[str] = "refreshToken"
USER_KEY: Final[str] = "user"
SESSION_KEYS: Final[tuple[str, ...]] = (TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY)

LOGOUT_EVENT: Final[str] = "auth:logout"

# Only these user attributes are persisted alongside the credential
_USER_FIELDS: Final[tuple[str, ...]] = ("id", "name", "email", "type", "role")


@dataclass(frozen=True, slots=True)
class Credential:
    """Access/refresh bearer token pair."""

    access_token: str
    refresh_token: str


def essential_user(user: Mapping[str, Any]) -> dict[str, Any]:
    """Return the subset of *user* that is persisted."""
    return {k: user[k] for k in _USER_FIELDS if k in user}


def user_id_of(user: Mapping[str, Any] | None) -> Any:
    """Return the ``id`` of a user record, or ``None``."""
    if not user:
        return None
    return user.get("id")


class AuthState(str, enum.Enum):
    """Top-level authentication state of one context."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"


class MonitorState(str, enum.Enum):
    """Expiry/inactivity state reported by the session monitor."""

    VALID = "valid"
    NEAR_EXPIRY = "near_expiry"
    EXPIRING_WARNING = "expiring_warning"
    EXPIRED = "expired"
    INACTIVE = "inactive"


@dataclass(frozen=True, slots=True)
class Session:
    """Derived, never persisted, snapshot of the local session."""

    has_user: bool = False
    time_remaining: int = 0
    is_inactive: bool = False
    is_refreshing: bool = False
    error: str | None = None
    user: Mapping[str, Any] | None = None
    state: AuthState = AuthState.UNINITIALIZED
    monitor_state: MonitorState | None = None
    warning: bool = False
    near_expiry: bool = False

    @property
    def is_active(self) -> bool:
        return (
            self.has_user
            and not self.is_inactive
            and self.time_remaining > 0
            and not self.error
        )

    @property
    def is_expired(self) -> bool:
        return self.time_remaining <= 0

    @property
    def needs_renewal(self) -> bool:
        return self.warning and self.time_remaining > 0


@dataclass(frozen=True, slots=True)
class LogoutEvent:
    """Payload of the ``auth:logout`` broadcast."""

    user_id: Any
    timestamp: int
    source: str | None = None
    name: str = LOGOUT_EVENT


@dataclass(frozen=True, slots=True)
class StorageChange:
    """Notification emitted to other contexts when a storage key changes."""

    key: str
    old_value: str | None
    new_value: str | None
    source: str | None = None


@dataclass(frozen=True, slots=True)
class LoginResult:
    """Structured outcome of :meth:`AuthOrchestrator.login`."""

    ok: bool
    user: Mapping[str, Any] | None = None
    error: str | None = None
    status_code: int | None = None

