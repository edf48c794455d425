"""Origin-scoped key/value storage areas shared by several contexts.

A *storage area* plays the role of the browser's ``localStorage``: a small,
string-valued map shared by every context ("tab") of the same origin.  Each
mutation carries the ``source`` context id, and listeners registered by
*other* contexts receive a :class:`~sps_admin.session.models.StorageChange`.
The writing context is never notified of its own writes.

Implementations
---------------
:class:`MemoryStorageArea`
    Process-local; several orchestrators in one process share it.
:class:`DiskStorageArea`
    One JSON file per origin under ``SPS_STORAGE_DIR`` (default
    ``~/.sps-admin/storage``).  Writes use *temp-file + os.replace* under an
    advisory lock file.  Writes from other processes are discovered by
    :meth:`DiskStorageArea.poll`, which diffs the file against the last
    snapshot and notifies every local listener.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from contextlib import contextmanager
from hashlib import sha256
from pathlib import Path
from typing import Callable, Iterator, Protocol, runtime_checkable

from sps_admin.session.models import StorageChange

_LOG = logging.getLogger("sps-admin.session.storage")

StorageListener = Callable[[StorageChange], None]


@runtime_checkable
class StorageArea(Protocol):
    """Minimal persistence contract shared by every context of an origin."""

    def get_item(self, key: str) -> str | None: ...
    def set_item(self, key: str, value: str, *, source: str | None = None) -> None: ...
    def remove_item(self, key: str, *, source: str | None = None) -> None: ...
    def keys(self) -> list[str]: ...

    def subscribe(self, listener: StorageListener, *, context_id: str | None = None) -> Callable[[], None]:
        """Register *listener*; return a callable that unregisters it."""
        ...


class _ListenerRegistry:
    """Fan-out of storage changes to contexts other than the writer."""

    def __init__(self) -> None:
        self._listeners: list[tuple[str | None, StorageListener]] = []

    def add(self, listener: StorageListener, context_id: str | None) -> Callable[[], None]:
        entry = (context_id, listener)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(entry)
            except ValueError:
                pass

        return _unsubscribe

    def notify(self, change: StorageChange) -> None:
        for context_id, listener in list(self._listeners):
            if change.source is not None and context_id == change.source:
                continue
            try:
                listener(change)
            except Exception:
                _LOG.exception("Storage listener failed for key=%s", change.key)


# --------------------------------------------------------------------------- #
# In-memory implementation                                                    #
# --------------------------------------------------------------------------- #
class MemoryStorageArea:
    """Process-local storage area."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._registry = _ListenerRegistry()

    def get_item(self, key: str) -> str | None:
        return self._data.get(key)

    def set_item(self, key: str, value: str, *, source: str | None = None) -> None:
        old = self._data.get(key)
        self._data[key] = value
        if old != value:
            self._registry.notify(StorageChange(key, old, value, source))

    def remove_item(self, key: str, *, source: str | None = None) -> None:
        old = self._data.pop(key, None)
        if old is not None:
            self._registry.notify(StorageChange(key, old, None, source))

    def keys(self) -> list[str]:
        return list(self._data)

    def subscribe(self, listener: StorageListener, *, context_id: str | None = None) -> Callable[[], None]:
        return self._registry.add(listener, context_id)


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #
_UNSAFE_CHARS = re.compile(r"[^a-z0-9]+")

LOCK_STALE_AFTER: float = 10.0


def _origin_filename(origin: str) -> str:
    """``<readable-origin>-<digest>.json``; the digest keeps similar origins apart."""
    readable = _UNSAFE_CHARS.sub("-", origin.lower()).strip("-")[:48] or "origin"
    digest = sha256(origin.encode("utf-8")).hexdigest()[:12]
    return f"{readable}-{digest}.json"


def _replace_json(path: Path, data: dict[str, str]) -> None:
    # per-process temp name, so two writers never share a half-written file
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    tmp.write_text(json.dumps(data, separators=(",", ":"), sort_keys=True), encoding="utf-8")
    os.replace(tmp, path)


def _break_stale_lock(lock_path: Path, stale_after: float) -> bool:
    try:
        age = time.time() - lock_path.stat().st_mtime
    except FileNotFoundError:
        return True
    if age < stale_after:
        return False
    _LOG.warning("Removing stale storage lock %s (%.1fs old)", lock_path.name, age)
    lock_path.unlink(missing_ok=True)
    return True


@contextmanager
def _exclusive_lock(
    lock_path: Path,
    *,
    timeout: float = 0.5,
    interval: float = 0.02,
    stale_after: float = LOCK_STALE_AFTER,
) -> Iterator[None]:
    """Hold *lock_path* (created with ``O_EXCL``) for the duration of the block.

    A lock older than *stale_after* seconds belongs to a writer that died
    and is removed.

    Raises:
        TimeoutError: If a live writer keeps the lock past *timeout*.
    """
    deadline = time.monotonic() + timeout
    while True:
        try:
            os.close(os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY))
            break
        except FileExistsError:
            if _break_stale_lock(lock_path, stale_after):
                continue
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Storage lock {lock_path} is held by another writer") from None
            time.sleep(interval)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


class DiskStorageArea:
    """JSON-file implementation of :class:`StorageArea`."""

    def __init__(self, origin: str, base_dir: str | os.PathLike | None = None) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("SPS_STORAGE_DIR")
            or Path.home() / ".sps-admin" / "storage"
        ).expanduser()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.base_dir / _origin_filename(origin)
        self._lock = self.path.with_suffix(".lock")
        self._registry = _ListenerRegistry()
        self._snapshot: dict[str, str] = self._read()

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError):
            _LOG.warning("Unreadable storage file %s, treating as empty", self.path.name)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _mutate(self, key: str, value: str | None, source: str | None) -> None:
        with _exclusive_lock(self._lock):
            data = self._read()
            old = data.get(key)
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
            if old != value:
                _replace_json(self.path, data)
        self._snapshot = data
        if old != value:
            self._registry.notify(StorageChange(key, old, value, source))

    def get_item(self, key: str) -> str | None:
        return self._read().get(key)

    def set_item(self, key: str, value: str, *, source: str | None = None) -> None:
        self._mutate(key, value, source)

    def remove_item(self, key: str, *, source: str | None = None) -> None:
        self._mutate(key, None, source)

    def keys(self) -> list[str]:
        return list(self._read())

    def subscribe(self, listener: StorageListener, *, context_id: str | None = None) -> Callable[[], None]:
        return self._registry.add(listener, context_id)

    def poll(self) -> list[StorageChange]:
        """Detect writes made by other processes and notify local listeners."""
        current = self._read()
        changes = [
            StorageChange(key, self._snapshot.get(key), current.get(key), None)
            for key in sorted(set(self._snapshot) | set(current))
            if self._snapshot.get(key) != current.get(key)
        ]
        self._snapshot = current
        for change in changes:
            self._registry.notify(change)
        return changes
