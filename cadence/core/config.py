"""
Cadence Configuration — loads and merges config from multiple sources.

Precedence (highest to lowest):
1. Explicit overrides (passed in code)
2. Environment variables (CADENCE_*)
3. Project config (./cadence.toml)
4. User config (~/.cadence/config.toml)
5. Defaults (hardcoded)

Environment variable mapping:
    CADENCE_SCHEDULER_INTERVAL → scheduler.interval
    CADENCE_LOG_DIR            → logging.dir
    CADENCE_LOG_LEVEL          → logging.console_level
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from cadence.core.errors import ConfigError

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Config Sub-Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SchedulerConfig(BaseModel):
    """Scheduler configuration."""

    interval: int = Field(default=60000, ge=1)  # poll period, milliseconds


class LoggingConfig(BaseModel):
    """Log output configuration."""

    dir: str = "~/.cadence/logs"
    console_level: str = "WARNING"

    @property
    def path(self) -> Path:
        return Path(self.dir).expanduser()


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Main Config
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CadenceConfig(BaseModel):
    """Root configuration for Cadence."""

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(
        overrides: dict[str, Any] | None = None,
        project_path: Path | None = None,
        user_path: Path | None = None,
    ) -> CadenceConfig:
        """
        Load configuration from all sources and merge.

        Precedence: overrides > env vars > project toml > user toml > defaults
        """
        merged: dict[str, Any] = {}

        user_config_path = user_path or Path.home() / ".cadence" / "config.toml"
        if user_config_path.exists():
            _deep_merge(merged, _load_toml(user_config_path))

        project_config_path = project_path or Path.cwd() / "cadence.toml"
        if project_config_path.exists():
            _deep_merge(merged, _load_toml(project_config_path))

        _deep_merge(merged, _load_from_env())

        if overrides:
            _deep_merge(merged, overrides)

        try:
            return CadenceConfig(**merged)
        except Exception as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Internal Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


_ENV_MAPPING = {
    "CADENCE_SCHEDULER_INTERVAL": ("scheduler", "interval"),
    "CADENCE_LOG_DIR": ("logging", "dir"),
    "CADENCE_LOG_LEVEL": ("logging", "console_level"),
}


def _load_toml(path: Path) -> dict[str, Any]:
    """Load a TOML file."""
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"Failed to load config from {path}: {e}") from e


def _load_from_env() -> dict[str, Any]:
    """Load configuration from CADENCE_* environment variables."""
    result: dict[str, Any] = {}
    for env_var, (section, key) in _ENV_MAPPING.items():
        value = os.environ.get(env_var)
        if value is not None:
            result.setdefault(section, {})[key] = _convert_value(value)
    return result


def _convert_value(value: str) -> Any:
    """Convert an environment string to bool/int where it looks like one."""
    lowered = value.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    try:
        return int(value)
    except ValueError:
        return value


def _deep_merge(base: dict, override: dict) -> None:
    """Deep merge override into base (mutates base)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
