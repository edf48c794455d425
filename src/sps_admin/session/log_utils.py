"""Structured logging helpers for client session components.

This module purposefully restricts **which** contextual attributes are attached
to log records in order to avoid accidentally leaking secrets.  All helpers
ONLY inject the following *non-sensitive* fields:

- ``context_id``     – Identifier of the local context ("tab"), first 8 chars kept
- ``user_id``        – Identifier of the signed-in user
- ``correlation_id`` – Placeholder, to be wired by outer layers

Security events
---------------
:func:`log_security_event` writes one record per auth-relevant event
(``token_refresh_failed``, ``session_expired``, ``logout_from_other_tab``…) to
the ``sps-admin.session.security`` logger.  Payload keys that may carry
credentials are replaced with ``[REDACTED]`` before formatting.  Routine
success events are logged at DEBUG, everything else at INFO/WARNING.

Usage
-----
>>> from sps_admin.session.log_utils import get_session_logger
>>> log = get_session_logger(
...     base_logger_name="sps-admin.session.monitor",
...     context_id="3f2a9c1e7d4b4f0e",
...     user_id=1,
... )
>>> log.info("Session monitor started")
INFO sps-admin.session.monitor context_id=3f2a9c1e user_id=1 ...

The adapter is a thin wrapper around :class:`logging.LoggerAdapter`.
"""

from __future__ import annotations

import logging
from typing import Any, Final, Mapping, MutableMapping

_SECURITY_LOG = logging.getLogger("sps-admin.session.security")

_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset(
    {
        "token",
        "accesstoken",
        "access_token",
        "refreshtoken",
        "refresh_token",
        "password",
        "authorization",
        "user",
    }
)

# Events reported at DEBUG only; they are expected on every healthy session
_ROUTINE_EVENTS: Final[frozenset[str]] = frozenset(
    {"login_success", "logout_success", "token_refresh_success", "session_renewal_success"}
)

# Events that indicate a likely attack or a broken backend
_WARNING_EVENTS: Final[frozenset[str]] = frozenset(
    {
        "request_with_expired_token",
        "token_refresh_failed",
        "api_error_unauthorized",
        "api_error_forbidden",
        "api_error_server",
        "session_renewal_failed",
    }
)


_CONTEXT_FIELDS: Final[tuple[str, ...]] = ("context_id", "user_id", "correlation_id")
_CONTEXT_ID_CHARS: Final[int] = 8


class _SessionLoggerAdapter(logging.LoggerAdapter):
    """Attach the whitelisted session context to every record."""

    def __init__(self, logger: logging.Logger, context: Mapping[str, Any]):
        fields = {k: context[k] for k in _CONTEXT_FIELDS if context.get(k) is not None}
        if "context_id" in fields:
            # a prefix is enough to correlate records of one context
            fields["context_id"] = str(fields["context_id"])[:_CONTEXT_ID_CHARS]
        super().__init__(logger, fields)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        # call-site extras win over the adapter's context
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_session_logger(
    *,
    base_logger_name: str = "sps-admin.session",
    context_id: str | None = None,
    user_id: Any = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with session context."""
    logger = logging.getLogger(base_logger_name)
    return _SessionLoggerAdapter(
        logger,
        {
            "context_id": context_id,
            "user_id": user_id,
            "correlation_id": correlation_id,
        },
    )


def redact(data: Any) -> Any:
    """Return a copy of *data* with credential-bearing keys replaced."""
    if isinstance(data, Mapping):
        return {
            k: "[REDACTED]" if str(k).lower() in _SENSITIVE_KEYS else redact(v)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(v) for v in data]
    return data


def log_security_event(event_type: str, **data: Any) -> None:
    """Write a single security/audit event record."""
    if event_type in _ROUTINE_EVENTS:
        level = logging.DEBUG
    elif event_type in _WARNING_EVENTS:
        level = logging.WARNING
    else:
        level = logging.INFO
    if not _SECURITY_LOG.isEnabledFor(level):
        return
    fields = " ".join(f"{k}={v}" for k, v in sorted(redact(data).items()))
    _SECURITY_LOG.log(
        level,
        "security_event=%s %s",
        event_type,
        fields,
        extra={"security_event": event_type},
    )
