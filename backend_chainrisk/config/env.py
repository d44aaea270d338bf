"""
Environment variable loading for the chain risk engine.

- Loads .env from the project root when available (python-dotenv).
- Typed readers for CHAINRISK_* tunables; malformed values raise
  InvalidInputError instead of falling back silently.
"""

from __future__ import annotations

import os
from pathlib import Path

from backend_chainrisk.core.exceptions import InvalidInputError

# Project root: config is backend_chainrisk/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


def load_chainrisk_env() -> None:
    """Load .env from project root. Safe to call multiple times; existing env wins."""
    from dotenv import load_dotenv

    if _ENV_PATH.is_file():
        load_dotenv(_ENV_PATH, override=False)


def _raw(name: str) -> str:
    return (os.getenv(name) or "").strip()


def env_float(name: str, default: float) -> float:
    raw = _raw(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise InvalidInputError(name, raw, "expected a number") from e


def env_int(name: str, default: int) -> int:
    raw = _raw(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidInputError(name, raw, "expected an integer") from e


def env_bool(name: str, default: bool) -> bool:
    raw = _raw(name).lower()
    if not raw:
        return default
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise InvalidInputError(name, raw, "expected one of 1/0, true/false, yes/no, on/off")
