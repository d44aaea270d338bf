"""
Configuration management for the chain risk engine.

Loads analysis tunables from environment variables and an optional .env file.
Exposes a single source of truth for pipeline parameters.
"""

from backend_chainrisk.config.settings import EngineSettings, get_settings, reset_settings_cache  # noqa: F401

__all__ = ["EngineSettings", "get_settings", "reset_settings_cache"]
