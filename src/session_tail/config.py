"""Configuration loading for session-tail.

Settings come from three layers, later layers winning: an optional YAML
file, ``SESSION_TAIL_*`` environment variables, and keyword overrides.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError
from .monitoring.config import MonitorConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "SESSION_TAIL_"

# Environment variable suffix -> setting name
_ENV_SETTINGS = {
    "PROJECTS_PATH": "projects_path",
    "POLL_INTERVAL": "poll_interval_seconds",
    "LOG_LEVEL": "log_level",
}

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_MONITOR_FIELDS = {f.name: f for f in fields(MonitorConfig)}


@dataclass
class Settings:
    """
    Resolved settings for a monitoring run.

    Attributes:
        monitor: Configuration handed to SessionMonitor
        log_level: Level for the session_tail logger
        log_dir: Directory for structured log files (None disables file logging)
    """

    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    log_level: str = "INFO"
    log_dir: str | None = None


def load_config(path: str | Path | None = None, **overrides: Any) -> Settings:
    """Load settings from YAML, the environment, and keyword overrides.

    YAML keys mirror the MonitorConfig fields, plus ``log_level`` and
    ``log_dir``. When neither ``session_id`` nor ``working_directory`` is
    given, the current directory is used as the working directory.

    Args:
        path: Optional YAML file
        **overrides: Setting values that take precedence over everything else

    Returns:
        Validated settings

    Raises:
        ConfigError: If the file cannot be read or parsed, a key is unknown,
            or a value is invalid
    """
    values: dict[str, Any] = {}

    if path is not None:
        values.update(_read_yaml(Path(path)))

    for suffix, name in _ENV_SETTINGS.items():
        env_value = os.getenv(f"{ENV_PREFIX}{suffix}")
        if env_value:
            values[name] = env_value

    values.update({key: value for key, value in overrides.items() if value is not None})

    settings = _build_settings(values)
    if not settings.monitor.session_id and not settings.monitor.working_directory:
        settings.monitor.working_directory = os.getcwd()

    logger.debug(
        "Loaded configuration",
        extra={
            "config_path": str(path) if path is not None else None,
            "log_level": settings.log_level,
        },
    )
    return settings


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse configuration YAML: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return data


def _build_settings(values: dict[str, Any]) -> Settings:
    settings = Settings()
    monitor_values: dict[str, Any] = {}

    for key, value in values.items():
        if key == "log_level":
            settings.log_level = _validate_log_level(value)
        elif key == "log_dir":
            settings.log_dir = str(value) if value else None
        elif key in _MONITOR_FIELDS:
            monitor_values[key] = _coerce(key, value)
        else:
            raise ConfigError(f"Unknown configuration key: {key}")

    settings.monitor = MonitorConfig(**monitor_values)
    _validate_monitor(settings.monitor)
    return settings


def _coerce(key: str, value: Any) -> Any:
    """Convert a raw YAML or environment value to the field's type."""
    default = _MONITOR_FIELDS[key].default

    try:
        if isinstance(default, bool):
            return _to_bool(key, value)
        if isinstance(default, int):
            if isinstance(value, bool):
                raise ValueError(value)
            return int(value)
        if isinstance(default, float):
            if isinstance(value, bool):
                raise ValueError(value)
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from e

    return str(value) if value is not None else None


def _to_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
    raise ConfigError(f"Invalid boolean for {key}: {value!r}")


def _validate_log_level(value: Any) -> str:
    level = str(value).upper()
    if level not in _LOG_LEVELS:
        raise ConfigError(f"Invalid log level: {value!r}. Expected one of {', '.join(_LOG_LEVELS)}")
    return level


def _validate_monitor(config: MonitorConfig) -> None:
    if config.poll_interval_seconds <= 0:
        raise ConfigError(
            f"poll_interval_seconds must be positive, got {config.poll_interval_seconds}"
        )
    if config.new_file_tolerance_seconds < 0:
        raise ConfigError(
            "new_file_tolerance_seconds must not be negative, "
            f"got {config.new_file_tolerance_seconds}"
        )
    if config.max_read_bytes <= 0:
        raise ConfigError(f"max_read_bytes must be positive, got {config.max_read_bytes}")
    if config.dedup_capacity <= 0:
        raise ConfigError(f"dedup_capacity must be positive, got {config.dedup_capacity}")
