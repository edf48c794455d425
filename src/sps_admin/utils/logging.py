"""Logging utilities shared by the sps-admin client packages."""

from __future__ import annotations

import logging
import os
from typing import Final

_LOG_FORMAT: Final[str] = "%(asctime)s %(levelname)s %(name)s %(message)s"


def mask_sensitive(value: str | None, keep_chars: int = 4) -> str:
    """Mask a secret, keeping only its first *keep_chars* characters.

    Args:
        value: The secret to mask.
        keep_chars: How many leading characters stay visible.

    Returns:
        The masked value, ``"None"`` for missing input, or all asterisks when
        the value is too short to reveal anything safely.
    """
    if not value:
        return "None"
    if len(value) <= keep_chars * 2:
        return "*" * len(value)
    return value[:keep_chars] + "*" * (len(value) - keep_chars)


def setup_logging(level: int | str | None = None, logger_name: str = "sps-admin") -> logging.Logger:
    """Configure the package logger.

    The level is taken from *level*, then ``SPS_LOG_LEVEL``, then ``WARNING``.
    A stream handler is attached only once.
    """
    resolved = level if level is not None else os.getenv("SPS_LOG_LEVEL", "WARNING")
    if isinstance(resolved, str):
        resolved = logging.getLevelName(resolved.strip().upper())
        if not isinstance(resolved, int):
            resolved = logging.WARNING

    logger = logging.getLogger(logger_name)
    logger.setLevel(resolved)
    if not any(getattr(h, "_sps_admin", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._sps_admin = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger
