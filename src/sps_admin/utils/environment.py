"""Utility functions related to environment variable parsing."""

import logging
import os
from typing import Final, Tuple

logger = logging.getLogger("sps-admin.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")
_FALSY: Final[Tuple[str, ...]] = ("false", "0", "no", "n", "off")


def env_str(name: str, default: str) -> str:
    """Return ``$name`` stripped, or *default* when unset or blank."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def env_bool(name: str, default: bool) -> bool:
    """
    Return a boolean flag from ``$name``.

    Unrecognised values fall back to *default* with a warning instead of
    silently flipping the flag.
    """
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    logger.warning("Ignoring unrecognised boolean %s=%r, using %s", name, raw, default)
    return default


def env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    """Return a non-negative float from ``$name``; raise ``ValueError`` on garbage."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value


def env_int(name: str, default: int, *, minimum: int = 0) -> int:
    """Return an integer from ``$name``; raise ``ValueError`` on garbage."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    return value
