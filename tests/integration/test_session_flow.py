"""Integration test: full session lifecycle against an in-process auth backend.

A small Starlette application plays the admin REST service and is mounted
through ``httpx.ASGITransport``.  Time is virtual, so expiry is reached by
advancing the scheduler instead of waiting.
"""

from __future__ import annotations

import asyncio

import httpx
import jwt
import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from sps_admin.config import SessionConfig
from sps_admin.session.bus import InMemoryEventBus
from sps_admin.session.models import AuthState
from sps_admin.session.orchestrator import AuthOrchestrator
from sps_admin.session.storage import DiskStorageArea
from sps_admin.session.sync import ENDED_ELSEWHERE_MESSAGE

pytestmark = [pytest.mark.integration, pytest.mark.ci_safe, pytest.mark.anyio]

SECRET = "integration-secret"
ACCESS_LIFETIME = 15 * 60
REFRESH_LIFETIME = 7 * 24 * 3600


# --------------------------------------------------------------------------- #
# Fake backend                                                                #
# --------------------------------------------------------------------------- #
class AuthBackend:
    """Stateful fake of the admin auth API, clocked by the test scheduler."""

    def __init__(self, clock) -> None:
        self.clock = clock
        self.refresh_calls = 0
        self.logout_calls = 0
        self.revoked: set[str] = set()
        self.app = Starlette(
            routes=[
                Route("/auth/login", self.login, methods=["POST"]),
                Route("/auth/refresh", self.refresh, methods=["POST"]),
                Route("/auth/logout", self.logout, methods=["POST"]),
                Route("/users", self.users, methods=["GET", "POST"]),
            ]
        )

    def _mint(self, lifetime: float, kind: str) -> str:
        payload = {"sub": "1", "typ": kind, "exp": int(self.clock() + lifetime)}
        # jti keeps tokens minted within the same second distinct
        payload["jti"] = f"{kind}-{self.refresh_calls}-{len(self.revoked)}"
        return jwt.encode(payload, SECRET, algorithm="HS256")

    def _pair(self) -> dict[str, str]:
        return {
            "accessToken": self._mint(ACCESS_LIFETIME, "access"),
            "refreshToken": self._mint(REFRESH_LIFETIME, "refresh"),
        }

    def _bearer(self, request: Request) -> str | None:
        header = request.headers.get("authorization", "")
        if not header.startswith("Bearer "):
            return None
        token = header[len("Bearer "):]
        try:
            jwt.decode(token, SECRET, algorithms=["HS256"], options={"verify_exp": False})
        except jwt.PyJWTError:
            return None
        return token

    async def login(self, request: Request) -> Response:
        body = await request.json()
        if body.get("email") != "ana@example.com" or body.get("password") != "secret":
            return JSONResponse({"message": "Invalid credentials"}, status_code=401)
        user = {"id": 1, "name": "Ana", "email": body["email"], "role": "admin"}
        return JSONResponse({"user": user, **self._pair()})

    async def refresh(self, request: Request) -> Response:
        self.refresh_calls += 1
        body = await request.json()
        try:
            jwt.decode(
                body.get("refreshToken", ""),
                SECRET,
                algorithms=["HS256"],
                options={"verify_exp": False},
            )
        except jwt.PyJWTError:
            return JSONResponse({"message": "Invalid refresh token"}, status_code=401)
        # let concurrent callers pile up behind the in-flight refresh
        await asyncio.sleep(0.01)
        return JSONResponse(self._pair())

    async def logout(self, request: Request) -> Response:
        self.logout_calls += 1
        return Response(status_code=204)

    async def users(self, request: Request) -> Response:
        token = self._bearer(request)
        if token is None or token in self.revoked:
            return JSONResponse({"message": "Unauthorized"}, status_code=401)
        if request.method == "POST":
            return JSONResponse(await request.json(), status_code=201)
        return JSONResponse([{"id": 1, "name": "Ana"}])


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture
def backend(scheduler) -> AuthBackend:
    return AuthBackend(scheduler)


@pytest.fixture
def make_tab(backend, scheduler, tmp_path):
    bus = InMemoryEventBus()
    config = SessionConfig(base_url="http://admin.test", storage_dir=tmp_path)

    def _make(context_id: str) -> AuthOrchestrator:
        return AuthOrchestrator(
            config,
            storage=DiskStorageArea(config.origin, tmp_path),
            bus=bus,
            scheduler=scheduler,
            transport=httpx.ASGITransport(app=backend.app),
            context_id=context_id,
        )

    return _make


# --------------------------------------------------------------------------- #
# Tests                                                                       #
# --------------------------------------------------------------------------- #
async def test_request_refreshes_expired_token_once(make_tab, backend, scheduler):
    tab = make_tab("tab-a")
    await tab.initialize()
    await tab.login("ana@example.com", "secret")
    tab.monitor.stop()  # drive expiry through requests only

    await scheduler.advance(ACCESS_LIFETIME - 60)
    responses = await asyncio.gather(*(tab.api.get("/users") for _ in range(5)))

    assert [r.status_code for r in responses] == [200] * 5
    assert backend.refresh_calls == 1
    await tab.aclose()


async def test_revoked_token_triggers_refresh_and_replay(make_tab, backend):
    tab = make_tab("tab-a")
    await tab.initialize()
    await tab.login("ana@example.com", "secret")
    backend.revoked.add(tab.store.access_token())

    response = await tab.api.post("/users", json={"name": "<i>Bia</i>"})

    assert response.status_code == 201
    assert response.json() == {"name": "iBia/i"}
    assert backend.refresh_calls == 1
    await tab.aclose()


async def test_session_survives_restart_and_logout_propagates(make_tab, backend, scheduler):
    tab_a = make_tab("tab-a")
    await tab_a.initialize()
    await tab_a.login("ana@example.com", "secret")
    await tab_a.aclose()

    # a new process over the same storage directory restores the session
    restored = make_tab("tab-a2")
    sibling = make_tab("tab-b")
    assert await restored.initialize() is AuthState.AUTHENTICATED
    assert await sibling.initialize() is AuthState.AUTHENTICATED

    await restored.logout()
    await scheduler.advance(SessionConfig().storage_poll_interval)

    assert backend.logout_calls == 1
    assert sibling.state is AuthState.ANONYMOUS
    assert sibling.session.error == ENDED_ELSEWHERE_MESSAGE
    for tab in (restored, sibling):
        await tab.aclose()
