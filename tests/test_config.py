"""
Tests for engine settings and env readers.
"""

from __future__ import annotations

import pytest

from backend_chainrisk.config import EngineSettings, get_settings, reset_settings_cache
from backend_chainrisk.config.env import env_bool, env_float, env_int
from backend_chainrisk.core.exceptions import InvalidInputError


def test_defaults(monkeypatch):
    """Without env overrides, settings match the documented defaults."""
    for name in (
        "CHAINRISK_CRITICAL_THRESHOLD",
        "CHAINRISK_TEMPORAL_WINDOW_SECONDS",
        "CHAINRISK_VALUE_SIMILARITY_THRESHOLD",
        "CHAINRISK_MAX_DFS_DEPTH",
        "CHAINRISK_MAX_ENTITY_CLUSTERS",
        "CHAINRISK_STRICT_ADDRESSES",
        "CHAINRISK_PREDICTION_HORIZON_DAYS",
    ):
        monkeypatch.delenv(name, raising=False)
    settings = get_settings()
    assert settings == EngineSettings()
    assert settings.critical_threshold == 5.0
    assert settings.temporal_window_seconds == 300.0
    assert settings.max_dfs_depth == 10
    assert settings.strict_addresses is False


def test_env_overrides(monkeypatch):
    """CHAINRISK_* variables override defaults after a cache reset."""
    monkeypatch.setenv("CHAINRISK_CRITICAL_THRESHOLD", "12.5")
    monkeypatch.setenv("CHAINRISK_STRICT_ADDRESSES", "yes")
    monkeypatch.setenv("CHAINRISK_MAX_ENTITY_CLUSTERS", "4")
    reset_settings_cache()
    settings = get_settings()
    assert settings.critical_threshold == 12.5
    assert settings.strict_addresses is True
    assert settings.max_entity_clusters == 4


def test_settings_cached(monkeypatch):
    """get_settings is cached until reset_settings_cache."""
    first = get_settings()
    monkeypatch.setenv("CHAINRISK_MAX_DFS_DEPTH", "3")
    assert get_settings() is first
    reset_settings_cache()
    assert get_settings().max_dfs_depth == 3


def test_malformed_env_raises(monkeypatch):
    """Malformed values raise InvalidInputError instead of falling back."""
    monkeypatch.setenv("CHAINRISK_TEST_FLOAT", "abc")
    monkeypatch.setenv("CHAINRISK_TEST_INT", "1.5")
    monkeypatch.setenv("CHAINRISK_TEST_BOOL", "maybe")
    with pytest.raises(InvalidInputError):
        env_float("CHAINRISK_TEST_FLOAT", 1.0)
    with pytest.raises(InvalidInputError):
        env_int("CHAINRISK_TEST_INT", 1)
    with pytest.raises(InvalidInputError):
        env_bool("CHAINRISK_TEST_BOOL", False)


def test_invalid_settings_rejected():
    """Out-of-range settings fail at construction."""
    with pytest.raises(InvalidInputError):
        EngineSettings(max_dfs_depth=0)
    with pytest.raises(InvalidInputError):
        EngineSettings(value_similarity_threshold=1.5)
    with pytest.raises(InvalidInputError):
        EngineSettings(critical_threshold=-1.0)
