"""Unit tests for environment variable helpers."""

from __future__ import annotations

import logging

import pytest

from sps_admin.utils.environment import env_bool, env_float, env_int, env_str


def test_env_str_strips_and_defaults(monkeypatch):
    monkeypatch.setenv("SPS_X", "  value  ")
    assert env_str("SPS_X", "d") == "value"
    monkeypatch.setenv("SPS_X", "   ")
    assert env_str("SPS_X", "d") == "d"
    monkeypatch.delenv("SPS_X")
    assert env_str("SPS_X", "d") == "d"


@pytest.mark.parametrize("raw, expected", [("TRUE", True), ("yes", True), ("0", False), ("off", False)])
def test_env_bool_values(monkeypatch, raw, expected):
    monkeypatch.setenv("SPS_FLAG", raw)
    assert env_bool("SPS_FLAG", not expected) is expected


def test_env_bool_unrecognised_keeps_default(monkeypatch, caplog):
    monkeypatch.setenv("SPS_FLAG", "maybe")
    with caplog.at_level(logging.WARNING, logger="sps-admin.utils.environment"):
        assert env_bool("SPS_FLAG", True) is True
    assert "SPS_FLAG" in caplog.text


def test_env_float_and_int(monkeypatch):
    monkeypatch.setenv("SPS_F", "2.5")
    monkeypatch.setenv("SPS_I", "7")
    assert env_float("SPS_F", 1.0) == 2.5
    assert env_int("SPS_I", 1) == 7
    assert env_int("SPS_MISSING", 3) == 3


def test_env_float_minimum(monkeypatch):
    monkeypatch.setenv("SPS_F", "0.2")
    with pytest.raises(ValueError, match="SPS_F"):
        env_float("SPS_F", 1.0, minimum=1.0)
