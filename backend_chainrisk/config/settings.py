"""
Engine settings: caller-tunable analysis parameters.

Read from CHAINRISK_* environment variables (and .env) once and cached.
Component functions never read settings themselves; the pipeline passes
values down as explicit keyword arguments.
"""

from __future__ import annotations

import functools
from dataclasses import asdict, dataclass
from typing import Any

from backend_chainrisk.config.env import env_bool, env_float, env_int, load_chainrisk_env
from backend_chainrisk.core.exceptions import InvalidInputError
from backend_chainrisk.core.validation import validate_amount, validate_fraction


@dataclass(frozen=True)
class EngineSettings:
    """Tunables shared by the pipeline stages."""

    critical_threshold: float = 5.0
    temporal_window_seconds: float = 300.0
    value_similarity_threshold: float = 0.10
    max_dfs_depth: int = 10
    max_entity_clusters: int = 10
    strict_addresses: bool = False
    prediction_horizon_days: int = 30

    def __post_init__(self) -> None:
        validate_amount("critical_threshold", self.critical_threshold)
        validate_amount("temporal_window_seconds", self.temporal_window_seconds)
        validate_fraction("value_similarity_threshold", self.value_similarity_threshold)
        if self.max_dfs_depth < 1:
            raise InvalidInputError("max_dfs_depth", self.max_dfs_depth, "must be >= 1")
        if self.max_entity_clusters < 1:
            raise InvalidInputError("max_entity_clusters", self.max_entity_clusters, "must be >= 1")
        if self.prediction_horizon_days < 1:
            raise InvalidInputError("prediction_horizon_days", self.prediction_horizon_days, "must be >= 1")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@functools.lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """Return the current engine settings (env overrides defaults)."""
    load_chainrisk_env()
    defaults = EngineSettings()
    return EngineSettings(
        critical_threshold=env_float("CHAINRISK_CRITICAL_THRESHOLD", defaults.critical_threshold),
        temporal_window_seconds=env_float(
            "CHAINRISK_TEMPORAL_WINDOW_SECONDS", defaults.temporal_window_seconds
        ),
        value_similarity_threshold=env_float(
            "CHAINRISK_VALUE_SIMILARITY_THRESHOLD", defaults.value_similarity_threshold
        ),
        max_dfs_depth=env_int("CHAINRISK_MAX_DFS_DEPTH", defaults.max_dfs_depth),
        max_entity_clusters=env_int("CHAINRISK_MAX_ENTITY_CLUSTERS", defaults.max_entity_clusters),
        strict_addresses=env_bool("CHAINRISK_STRICT_ADDRESSES", defaults.strict_addresses),
        prediction_horizon_days=env_int(
            "CHAINRISK_PREDICTION_HORIZON_DAYS", defaults.prediction_horizon_days
        ),
    )


def reset_settings_cache() -> None:
    """Drop the cached settings so the next get_settings() re-reads the environment."""
    get_settings.cache_clear()
