"""Unit tests for SessionConfig defaults and environment loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from sps_admin.config import SessionConfig


def test_defaults_match_admin_panel():
    cfg = SessionConfig()
    assert cfg.base_url == "http://localhost:3000"
    assert cfg.session_timeout == 1800
    assert cfg.warning_threshold == 300
    assert cfg.safety_margin == 300
    assert cfg.check_interval == 30
    assert cfg.max_network_retries == 3
    assert cfg.retry_base_delay == 2.0
    assert cfg.storage_dir is None


def test_from_env_reads_prefixed_variables(monkeypatch, tmp_path):
    monkeypatch.setenv("SPS_API_URL", "https://admin.example.com/")
    monkeypatch.setenv("SPS_SESSION_TIMEOUT", "600")
    monkeypatch.setenv("SPS_MAX_NETWORK_RETRIES", "5")
    monkeypatch.setenv("SPS_SANITIZE_PAYLOADS", "off")
    monkeypatch.setenv("SPS_STORAGE_DIR", str(tmp_path))

    cfg = SessionConfig.from_env()

    assert cfg.base_url == "https://admin.example.com"
    assert cfg.origin == "https://admin.example.com"
    assert cfg.session_timeout == 600.0
    assert cfg.max_network_retries == 5
    assert cfg.sanitize_payloads is False
    assert cfg.storage_dir == Path(tmp_path)


def test_from_env_custom_prefix(monkeypatch):
    monkeypatch.setenv("ADMIN_API_VERSION", "2.0")
    assert SessionConfig.from_env(prefix="ADMIN_").api_version == "2.0"


@pytest.mark.parametrize(
    "name, value",
    [
        ("SPS_API_TIMEOUT", "ten"),
        ("SPS_SAFETY_MARGIN", "-1"),
        ("SPS_CHECK_INTERVAL", "0.5"),
        ("SPS_MAX_NETWORK_RETRIES", "3.5"),
    ],
)
def test_invalid_numbers_raise_naming_the_variable(monkeypatch, name, value):
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=name):
        SessionConfig.from_env()


def test_warning_threshold_cannot_exceed_near_expiry():
    with pytest.raises(ValueError):
        SessionConfig(warning_threshold=900, near_expiry_threshold=600)


def test_with_overrides_returns_copy():
    base = SessionConfig()
    changed = base.with_overrides(check_interval=5.0)
    assert changed.check_interval == 5.0
    assert base.check_interval == 30.0
