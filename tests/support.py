"""Helpers shared by the session test-suite."""

from __future__ import annotations

import base64
import json
from typing import Any

import httpx
import jwt

START = 1_700_000_000.0


def encode_token(exp: float | None, **claims: Any) -> str:
    """Return an HS256 JWT whose ``exp`` is *exp* (omitted when ``None``)."""
    payload: dict[str, Any] = {"sub": "1", **claims}
    if exp is not None:
        payload["exp"] = int(exp)
    return jwt.encode(payload, "test-secret", algorithm="HS256")


def unsigned_token(claims: object) -> str:
    """Unsigned three-segment token with arbitrary *claims*.

    A ``str`` is taken as the literal claims JSON, for values ``json.dumps``
    would not produce.
    """

    def seg(obj: object) -> str:
        raw = (obj if isinstance(obj, str) else json.dumps(obj)).encode()
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()

    return f"{seg({'alg': 'none', 'typ': 'JWT'})}.{seg(claims)}."


class FakeAuthBackend:
    """``httpx.MockTransport`` handler emulating the admin auth endpoints.

    ``make_token(seconds)`` mints access/refresh tokens relative to the test
    clock.  Status overrides (``login_status`` …) let a test script failures.
    """

    def __init__(self, make_token, *, access_lifetime: float = 3600) -> None:
        self.make_token = make_token
        self.access_lifetime = access_lifetime
        self.users = {"ana@example.com": ("secret", {"id": 1, "name": "Ana", "role": "admin"})}
        self.login_status = 200
        self.refresh_status = 200
        self.logout_status = 200
        self.calls: list[tuple[str, str | None]] = []

    def count(self, path: str) -> int:
        return sum(1 for p, _ in self.calls if p == path)

    def _tokens(self) -> dict[str, str]:
        return {
            "accessToken": self.make_token(self.access_lifetime),
            "refreshToken": self.make_token(7 * 24 * 3600),
        }

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((path, request.headers.get("Authorization")))
        body = json.loads(request.content) if request.content else {}

        if path == "/auth/login":
            account = self.users.get(body.get("email"))
            if self.login_status != 200 or account is None or account[0] != body.get("password"):
                status = self.login_status if self.login_status != 200 else 401
                return httpx.Response(status, json={"message": "Invalid credentials"})
            user = dict(account[1], email=body["email"])
            return httpx.Response(200, json={"user": user, **self._tokens()})

        if path == "/auth/refresh":
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"message": "Invalid refresh token"})
            return httpx.Response(200, json=self._tokens())

        if path == "/auth/logout":
            return httpx.Response(self.logout_status)

        if request.headers.get("Authorization", "").startswith("Bearer "):
            return httpx.Response(200, json={"ok": True, "path": path})
        return httpx.Response(401, json={"message": "Missing token"})
