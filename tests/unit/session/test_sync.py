"""Unit tests for CrossTabSynchronizer reconciliation rules."""

from __future__ import annotations

from typing import Any, Mapping

import pytest

from sps_admin.session.bus import InMemoryEventBus
from sps_admin.session.models import Credential, LogoutEvent
from sps_admin.session.storage import DiskStorageArea, MemoryStorageArea
from sps_admin.session.store import TokenStore
from sps_admin.session.sync import ENDED_ELSEWHERE_MESSAGE, CrossTabSynchronizer


class FakeHost:
    """Records the callbacks the synchronizer drives."""

    def __init__(self, user: Mapping[str, Any] | None) -> None:
        self.user = user
        self.ended: list[str] = []
        self.adopted: list[Mapping[str, Any]] = []
        self.rechecks = 0

    def current_user(self):
        return self.user

    def end_local_session(self, message: str) -> None:
        self.ended.append(message)
        self.user = None

    def adopt_session(self, user) -> None:
        self.adopted.append(user)
        self.user = user

    def recheck_expiry(self) -> None:
        self.rechecks += 1


@pytest.fixture
def area() -> MemoryStorageArea:
    return MemoryStorageArea()


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


def _pair(area, bus, user):
    """Local context store+synchronizer and a sibling store on the same area."""
    local = TokenStore(area, context_id="local")
    sibling = TokenStore(area, context_id="sibling")
    sibling.save_credential(Credential("access", "refresh"))
    sibling.save_user(user)
    host = FakeHost(user)
    sync = CrossTabSynchronizer(local, bus, host)
    sync.start()
    return sibling, host, sync


def test_sibling_logout_ends_local_session(area, bus):
    sibling, host, _ = _pair(area, bus, {"id": 1})
    sibling.clear()
    assert host.ended == [ENDED_ELSEWHERE_MESSAGE]


def test_sibling_login_as_other_user_is_adopted(area, bus):
    sibling, host, _ = _pair(area, bus, {"id": 1})
    sibling.save_user({"id": 2, "name": "Bia"})
    assert host.adopted == [{"id": 2, "name": "Bia"}]
    assert host.ended == []


def test_token_rotation_for_same_user_rechecks_expiry(area, bus):
    sibling, host, _ = _pair(area, bus, {"id": 1})
    sibling.set("token", "rotated")
    assert host.rechecks == 1
    assert host.ended == []
    assert host.adopted == []


def test_refresh_token_changes_are_ignored(area, bus):
    sibling, host, _ = _pair(area, bus, {"id": 1})
    sibling.set("refreshToken", "rotated")
    assert host.rechecks == 0


def test_own_writes_are_ignored(area, bus):
    _, host, sync = _pair(area, bus, {"id": 1})
    local = TokenStore(area, context_id="local")
    local.clear()
    assert host.ended == []


def test_logout_broadcast_for_same_user_from_other_context(area, bus):
    _, host, _ = _pair(area, bus, {"id": 1})
    bus.publish(LogoutEvent(user_id=1, timestamp=0, source="sibling"))
    assert host.ended == [ENDED_ELSEWHERE_MESSAGE]


@pytest.mark.parametrize(
    "event",
    [
        LogoutEvent(user_id=2, timestamp=0, source="sibling"),
        LogoutEvent(user_id=1, timestamp=0, source="local"),
        "not-an-event",
    ],
)
def test_irrelevant_broadcasts_are_ignored(area, bus, event):
    _, host, _ = _pair(area, bus, {"id": 1})
    bus.publish(event)
    assert host.ended == []


def test_synchronizer_never_writes_storage(area, bus):
    sibling, _, _ = _pair(area, bus, {"id": 1})
    writes: list = []
    area.subscribe(writes.append, context_id="sibling")
    sibling.clear()
    bus.publish(LogoutEvent(user_id=1, timestamp=0, source="sibling"))
    assert writes == []


def test_stop_unsubscribes(area, bus):
    sibling, host, sync = _pair(area, bus, {"id": 1})
    sync.stop()
    assert not sync.started
    assert len(bus) == 0
    sibling.clear()
    assert host.ended == []


@pytest.mark.anyio
async def test_disk_area_changes_picked_up_by_polling(tmp_path, bus, scheduler):
    local_area = DiskStorageArea("http://localhost:3000", tmp_path)
    other_area = DiskStorageArea("http://localhost:3000", tmp_path)
    sibling = TokenStore(other_area, context_id="sibling")
    sibling.save_credential(Credential("access", "refresh"))
    sibling.save_user({"id": 1})
    local_area.poll()

    host = FakeHost({"id": 1})
    sync = CrossTabSynchronizer(
        TokenStore(local_area, context_id="local"),
        bus,
        host,
        scheduler=scheduler,
        poll_interval=2.0,
    )
    sync.start()

    sibling.clear()
    assert host.ended == []

    await scheduler.advance(2.0)
    assert host.ended == [ENDED_ELSEWHERE_MESSAGE]
    sync.stop()
    assert scheduler.pending == 0
