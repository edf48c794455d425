"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from sps_admin.session.scheduler import VirtualScheduler
from tests.support import START, encode_token


def pytest_addoption(parser):
    """Add integration option to pytest."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler(start=START)


@pytest.fixture
def make_token(scheduler: VirtualScheduler) -> Callable[..., str]:
    """Factory: ``make_token(seconds)`` expires *seconds* after virtual now."""

    def _make(seconds: float, **claims: Any) -> str:
        return encode_token(scheduler.now() + seconds, **claims)

    return _make
