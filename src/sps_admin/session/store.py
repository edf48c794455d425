"""Token store: the only owner of the persisted credential and user record.

Values are opaque to callers.  Before they reach the storage area they are
encoded (URL-safe base64 of the UTF-8 text, JSON for the user record); reads
apply the inverse and **fail closed**: a value that cannot be decoded is
reported as ``None`` and logged, never raised.

Only the three session keys (``token``, ``refreshToken``, ``user``) are
accepted.  Each mutation is tagged with the store's ``context_id`` so other
contexts sharing the storage area are notified.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import uuid
from typing import Any, Mapping

from sps_admin.session.models import (
    REFRESH_TOKEN_KEY,
    SESSION_KEYS,
    TOKEN_KEY,
    USER_KEY,
    Credential,
    essential_user,
)
from sps_admin.session.storage import StorageArea

_LOG = logging.getLogger("sps-admin.session.store")


def _encode(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii")


def _decode(data: str) -> str:
    pad_len = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * pad_len).decode("utf-8")


def _check_key(key: str) -> None:
    if key not in SESSION_KEYS:
        raise ValueError(f"unsupported session key: {key!r}")


class TokenStore:
    """Encode/decode and persist the session keys of one context."""

    def __init__(self, area: StorageArea, *, context_id: str | None = None) -> None:
        self.area = area
        self.context_id: str = context_id or uuid.uuid4().hex

    # ------------------------------------------------------------------ #
    # Generic key access                                                 #
    # ------------------------------------------------------------------ #
    def set(self, key: str, value: Any) -> None:
        _check_key(key)
        if key == USER_KEY:
            if not isinstance(value, Mapping):
                raise TypeError("user record must be a mapping")
            text = json.dumps(essential_user(value), separators=(",", ":"), sort_keys=True)
        else:
            if not isinstance(value, str) or not value:
                raise TypeError(f"{key} must be a non-empty string")
            text = value
        self.area.set_item(key, _encode(text), source=self.context_id)

    def get(self, key: str) -> Any:
        _check_key(key)
        return self.decode_value(key, self.area.get_item(key))

    def remove(self, key: str) -> None:
        _check_key(key)
        self.area.remove_item(key, source=self.context_id)

    @staticmethod
    def decode_value(key: str, raw: str | None) -> Any:
        """Decode a raw stored value; ``None`` on any failure."""
        if raw is None:
            return None
        try:
            text = _decode(raw)
        except (binascii.Error, UnicodeDecodeError, ValueError):
            _LOG.warning("Discarding undecodable value for key=%s", key)
            return None
        if key != USER_KEY:
            return text or None
        try:
            user = json.loads(text)
        except json.JSONDecodeError:
            _LOG.warning("Discarding undecodable user record")
            return None
        return user if isinstance(user, dict) else None

    # ------------------------------------------------------------------ #
    # Typed helpers                                                      #
    # ------------------------------------------------------------------ #
    def access_token(self) -> str | None:
        return self.get(TOKEN_KEY)

    def refresh_token(self) -> str | None:
        return self.get(REFRESH_TOKEN_KEY)

    def user(self) -> dict[str, Any] | None:
        return self.get(USER_KEY)

    def credential(self) -> Credential | None:
        access, refresh = self.access_token(), self.refresh_token()
        if not access or not refresh:
            return None
        return Credential(access_token=access, refresh_token=refresh)

    def save_credential(self, credential: Credential) -> None:
        self.set(TOKEN_KEY, credential.access_token)
        self.set(REFRESH_TOKEN_KEY, credential.refresh_token)

    def save_user(self, user: Mapping[str, Any]) -> None:
        self.set(USER_KEY, user)

    def clear(self) -> None:
        """Remove every session key (idempotent)."""
        for key in SESSION_KEYS:
            self.remove(key)

    def is_empty(self) -> bool:
        return all(self.area.get_item(k) is None for k in SESSION_KEYS)
