"""Configuration for the sps-admin client session subsystem.

All knobs are read from ``SPS_*`` environment variables by
:meth:`SessionConfig.from_env`; every value has a default matching the
behaviour of the admin panel, so an empty environment yields a working
configuration against ``http://localhost:3000``.

Durations are expressed in **seconds** here; the session monitor reports
``time_remaining`` in milliseconds.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path

from sps_admin.utils.environment import env_bool, env_float, env_int, env_str

logger = logging.getLogger("sps-admin.config")


@dataclass(frozen=True)
class SessionConfig:
    """Settings shared by every component of one client session."""

    base_url: str = "http://localhost:3000"
    timeout: float = 10.0
    api_version: str = "1.0"

    login_path: str = "/auth/login"
    refresh_path: str = "/auth/refresh"
    logout_path: str = "/auth/logout"

    # Token timing
    safety_margin: float = 5 * 60
    refresh_timeout: float = 10.0

    # Session monitor timing
    session_timeout: float = 30 * 60
    warning_threshold: float = 5 * 60
    near_expiry_threshold: float = 10 * 60
    check_interval: float = 30.0
    inactivity_grace: float = 60.0

    # Network retry policy
    max_network_retries: int = 3
    retry_base_delay: float = 2.0

    # Persistence
    storage_dir: Path | None = None
    storage_poll_interval: float = 2.0

    sanitize_payloads: bool = True

    def __post_init__(self) -> None:
        if self.warning_threshold > self.near_expiry_threshold:
            raise ValueError("warning_threshold must not exceed near_expiry_threshold")
        if self.max_network_retries < 0:
            raise ValueError("max_network_retries must be >= 0")

    @property
    def origin(self) -> str:
        """Origin key used to scope persisted storage."""
        return self.base_url.rstrip("/")

    def with_overrides(self, **changes: object) -> "SessionConfig":
        """Return a copy with *changes* applied."""
        return dataclasses.replace(self, **changes)

    @classmethod
    def from_env(cls, prefix: str = "SPS_") -> "SessionConfig":
        """Build a configuration from environment variables.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        storage_dir_raw = env_str(f"{prefix}STORAGE_DIR", "")
        cfg = cls(
            base_url=env_str(f"{prefix}API_URL", cls.base_url).rstrip("/"),
            timeout=env_float(f"{prefix}API_TIMEOUT", cls.timeout),
            api_version=env_str(f"{prefix}API_VERSION", cls.api_version),
            login_path=env_str(f"{prefix}LOGIN_PATH", cls.login_path),
            refresh_path=env_str(f"{prefix}REFRESH_PATH", cls.refresh_path),
            logout_path=env_str(f"{prefix}LOGOUT_PATH", cls.logout_path),
            safety_margin=env_float(f"{prefix}SAFETY_MARGIN", cls.safety_margin),
            refresh_timeout=env_float(f"{prefix}REFRESH_TIMEOUT", cls.refresh_timeout),
            session_timeout=env_float(f"{prefix}SESSION_TIMEOUT", cls.session_timeout),
            warning_threshold=env_float(f"{prefix}WARNING_THRESHOLD", cls.warning_threshold),
            near_expiry_threshold=env_float(
                f"{prefix}NEAR_EXPIRY_THRESHOLD", cls.near_expiry_threshold
            ),
            check_interval=env_float(f"{prefix}CHECK_INTERVAL", cls.check_interval, minimum=1.0),
            inactivity_grace=env_float(f"{prefix}INACTIVITY_GRACE", cls.inactivity_grace),
            max_network_retries=env_int(f"{prefix}MAX_NETWORK_RETRIES", cls.max_network_retries),
            retry_base_delay=env_float(f"{prefix}RETRY_BASE_DELAY", cls.retry_base_delay),
            storage_dir=Path(storage_dir_raw).expanduser() if storage_dir_raw else None,
            storage_poll_interval=env_float(
                f"{prefix}STORAGE_POLL_INTERVAL", cls.storage_poll_interval
            ),
            sanitize_payloads=env_bool(f"{prefix}SANITIZE_PAYLOADS", cls.sanitize_payloads),
        )
        logger.debug(
            "Loaded session config base_url=%s session_timeout=%ss check_interval=%ss",
            cfg.base_url,
            cfg.session_timeout,
            cfg.check_interval,
        )
        return cfg
