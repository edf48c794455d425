"""Exception types raised by the client session core.

Only lightweight, **data-carrying** exceptions live here so that UI or CLI
layers can transform them into user-facing messages.  A malformed token is
deliberately *not* an exception: decoding returns a tagged
:class:`~sps_admin.session.inspector.DecodeResult` instead.
"""

from __future__ import annotations


class SessionError(RuntimeError):
    """Base class for every failure surfaced by the session subsystem."""

    code: str = "session_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Session error.")

    def to_payload(self) -> dict[str, str]:
        """Return a JSON-serialisable payload **without secrets**."""
        return {"error": self.code, "message": str(self)}


class TokenExpiredError(SessionError):
    """The access token is past its safety-margin expiry and cannot be renewed."""

    code = "token_expired"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Access token expired.")


class RefreshFailedError(SessionError):
    """The refresh endpoint rejected the request, or no usable refresh token exists."""

    code = "refresh_failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Failed to refresh access token.")


class NetworkError(SessionError):
    """No response was received, even after the retry budget was spent."""

    code = "network_error"

    def __init__(self, message: str | None = None, *, attempts: int = 0) -> None:
        super().__init__(message or "Network unavailable.")
        self.attempts: int = attempts

    def to_payload(self) -> dict[str, str]:
        payload = super().to_payload()
        payload["attempts"] = str(self.attempts)
        return payload


class HttpError(SessionError):
    """A response with a 4xx/5xx status was received."""

    code = "http_error"

    def __init__(
        self,
        status_code: int,
        *,
        user_message: str,
        method: str = "",
        url: str = "",
        detail: str | None = None,
    ) -> None:
        super().__init__(detail or user_message)
        self.status_code: int = status_code
        self.user_message: str = user_message
        self.method: str = method
        self.url: str = url

    def to_payload(self) -> dict[str, str]:
        return {
            "error": self.code,
            "status": str(self.status_code),
            "message": self.user_message,
        }


class SessionInactiveError(SessionError):
    """The user was inactive for longer than the configured session timeout."""

    code = "session_inactive"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Session ended due to inactivity.")


class SessionEndedError(SessionError):
    """The session ended (logout) while the caller was waiting on it."""

    code = "session_ended"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "Session ended.")


# --------------------------------------------------------------------------- #
# User-facing text per HTTP status                                           #
# --------------------------------------------------------------------------- #
HTTP_ERROR_MESSAGES: dict[int, str] = {
    400: "Invalid data. Check the information sent.",
    401: "Unauthorized. Please sign in again.",
    403: "Access denied. You do not have permission to access this resource.",
    404: "Resource not found. Check the URL or the ID provided.",
    409: "Conflict. The resource already exists or is in use.",
    422: "Invalid data. Check the required fields.",
    429: "Too many requests. Try again in a few minutes.",
    500: "Internal server error. Try again later.",
    502: "Service temporarily unavailable. Try again in a few minutes.",
    503: "Service under maintenance. Try again later.",
    504: "Server timeout. Try again in a few minutes.",
}
DEFAULT_ERROR_MESSAGE = "Unexpected error. Try again later."
_SERVER_ERROR_MESSAGE = HTTP_ERROR_MESSAGES[500]


def user_message_for(status_code: int | None) -> str:
    """Return the UI text for *status_code*."""
    if status_code is None:
        return DEFAULT_ERROR_MESSAGE
    if status_code in HTTP_ERROR_MESSAGES:
        return HTTP_ERROR_MESSAGES[status_code]
    if 500 <= status_code < 600:
        return _SERVER_ERROR_MESSAGE
    return DEFAULT_ERROR_MESSAGE
