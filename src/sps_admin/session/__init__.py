"""Client-side session core of the sps-admin panel.

This namespace hosts the building blocks that keep a bearer-token session
alive for one client context (the Python counterpart of a browser tab).

Sub-modules
-----------
clock
    Test-friendly time abstraction.
scheduler
    Timer abstraction (asyncio-backed and virtual-time implementations).
storage
    Origin-scoped key/value storage areas with change notifications.
store
    Encoded persistence of the credential and user record.
inspector
    Fail-closed JWT expiry inspection.
coordinator
    Single-flight token refresh.
middleware
    ``httpx`` auth flow, retrying transport and application API façade.
monitor
    Expiry countdown, warnings and inactivity detection.
sync
    Cross-context reconciliation of storage changes and logout broadcasts.
orchestrator
    Top-level authentication state machine wiring everything together.
errors
    Exception types and user-facing HTTP error text.
log_utils
    Structured logging helpers (thin wrapper around :pymod:`logging`).

All public objects are re-exported here for convenience.
"""

from __future__ import annotations

from .clock import Clock, default_clock  # noqa: F401
from .scheduler import AsyncioScheduler, Scheduler, TimerGroup, VirtualScheduler  # noqa: F401
from .storage import DiskStorageArea, MemoryStorageArea, StorageArea  # noqa: F401
from .store import TokenStore  # noqa: F401
from .inspector import DecodeResult, decode_claims, is_expired, time_remaining  # noqa: F401
from .bus import InMemoryEventBus, SessionEventBus  # noqa: F401
from .coordinator import RefreshCoordinator  # noqa: F401
from .middleware import ApiClient, RetryTransport, SessionAuth  # noqa: F401
from .monitor import SessionMonitor  # noqa: F401
from .sync import CrossTabSynchronizer  # noqa: F401
from .orchestrator import AuthOrchestrator  # noqa: F401
from .models import (  # noqa: F401
    AuthState,
    Credential,
    LoginResult,
    LogoutEvent,
    MonitorState,
    Session,
)
from .errors import (  # noqa: F401
    HttpError,
    NetworkError,
    RefreshFailedError,
    SessionEndedError,
    SessionError,
    SessionInactiveError,
    TokenExpiredError,
)
from .log_utils import get_session_logger, log_security_event  # noqa: F401

__all__ = [
    # clock / timers
    "Clock",
    "default_clock",
    "Scheduler",
    "AsyncioScheduler",
    "VirtualScheduler",
    "TimerGroup",
    # storage
    "StorageArea",
    "MemoryStorageArea",
    "DiskStorageArea",
    "TokenStore",
    # token inspection
    "DecodeResult",
    "decode_claims",
    "is_expired",
    "time_remaining",
    # components
    "SessionEventBus",
    "InMemoryEventBus",
    "RefreshCoordinator",
    "SessionAuth",
    "RetryTransport",
    "ApiClient",
    "SessionMonitor",
    "CrossTabSynchronizer",
    "AuthOrchestrator",
    # models
    "AuthState",
    "Credential",
    "LoginResult",
    "LogoutEvent",
    "MonitorState",
    "Session",
    # errors
    "SessionError",
    "TokenExpiredError",
    "RefreshFailedError",
    "NetworkError",
    "HttpError",
    "SessionInactiveError",
    "SessionEndedError",
    # logging helpers
    "get_session_logger",
    "log_security_event",
]
