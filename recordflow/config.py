"""
Recordflow — Environment Config Loader

Three-tier configuration loading:
  1. Base YAML file (recordflow.yaml)
  2. Per-environment overlay files (config/{RF_ENV}.yaml merged over base)
  3. Environment variable overrides (RF_ prefixed)

Usage:
    from recordflow.config import load_config, Settings

    cfg = load_config(base_path="recordflow.yaml", env="prod")
    settings = Settings.from_config(cfg)

Environment variables:
    RF_ENV                      — active profile (dev, staging, prod)
    RF_CONFIG_DIR               — directory for overlay files (default: config/)
    RF_*                        — overrides (e.g., RF_AUTOMATION__BULK_THRESHOLD=10)
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from recordflow.types import RecordflowError

logger = logging.getLogger("recordflow.config")

DEFAULTS: dict[str, Any] = {
    "record_store": {
        "instance_url": "",
        "api_key": "",
        "timeout_seconds": 30,
    },
    "execution": {
        "stop_on_error": False,
    },
    "automation": {
        "db_path": "recordflow.db",
        "countdown_seconds": 3,
        "bulk_threshold": 5,
    },
    "logging": {
        "level": "INFO",
    },
}


class ConfigError(RecordflowError):
    """Raised when a config file exists but cannot be read."""
    pass


# ═══════════════════════════════════════════════════════════════════
# Deep Merge
# ═══════════════════════════════════════════════════════════════════

def deep_merge(base: dict, overlay: dict) -> dict:
    """
    Deep-merge overlay into base. Overlay values win.
    Lists are replaced (not appended). Dicts are recursed.
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _set_nested(d: dict, keys: list[str], value: Any):
    """Set a nested dict value from a list of keys."""
    for key in keys[:-1]:
        d = d.setdefault(key, {})
    d[keys[-1]] = value


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


# ═══════════════════════════════════════════════════════════════════
# Tier 2: Overlay Files
# ═══════════════════════════════════════════════════════════════════

def _load_overlay_file(
    base_path: str,
    env: str = "",
    config_dir: str = "",
) -> dict[str, Any]:
    """
    Load per-environment overlay file.
    Looks for {config_dir}/{env}.yaml, then config/{env}.yaml next to the base file.
    Returns empty dict if not found.
    """
    env = env or os.environ.get("RF_ENV", "")
    if not env:
        return {}

    config_dir = config_dir or os.environ.get("RF_CONFIG_DIR", "config")

    candidates = [
        Path(config_dir) / f"{env}.yaml",
        Path(config_dir) / f"{env}.yml",
        Path(os.path.dirname(base_path) or ".") / "config" / f"{env}.yaml",
    ]

    for path in candidates:
        if path.exists():
            overlay = _read_yaml(path)
            logger.info("Loaded config overlay: %s (%d keys)", path, len(overlay))
            return overlay

    logger.debug("No config overlay found for env=%s", env)
    return {}


# ═══════════════════════════════════════════════════════════════════
# Tier 3: Environment Variable Overrides
# ═══════════════════════════════════════════════════════════════════

def _load_env_overrides(prefix: str = "RF_") -> dict[str, Any]:
    """
    Load RF_ prefixed environment variables as config overrides.

    Naming convention (double underscore separates levels, since keys
    themselves contain single underscores):
      RF_SECTION__KEY=value → {"section": {"key": value}}

    Values are parsed as YAML scalars (numbers, booleans).
    RF_ENV, RF_CONFIG_DIR, RF_VERSION are meta config and excluded.
    """
    excluded = {"RF_ENV", "RF_CONFIG_DIR", "RF_VERSION"}
    overrides: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key in excluded:
            continue
        path = [p for p in key[len(prefix):].lower().split("__") if p]
        if not path:
            continue
        try:
            parsed = yaml.safe_load(value)
        except yaml.YAMLError:
            parsed = value
        _set_nested(overrides, path, parsed)

    if overrides:
        logger.debug("Loaded %d env var overrides", len(overrides))
    return overrides


# ═══════════════════════════════════════════════════════════════════
# Main Loader
# ═══════════════════════════════════════════════════════════════════

def load_config(
    base_path: str = "recordflow.yaml",
    env: str = "",
    config_dir: str = "",
    include_env_vars: bool = True,
) -> dict[str, Any]:
    """
    Load configuration with three-tier merging over built-in defaults.

    Priority (highest wins):
      1. Environment variable overrides (RF_*)
      2. Per-environment overlay file (config/{env}.yaml)
      3. Base config file (recordflow.yaml)
      4. DEFAULTS
    """
    config = copy.deepcopy(DEFAULTS)
    if os.path.exists(base_path):
        config = deep_merge(config, _read_yaml(Path(base_path)))
        logger.debug("Loaded base config: %s", base_path)

    overlay = _load_overlay_file(base_path, env=env, config_dir=config_dir)
    if overlay:
        config = deep_merge(config, overlay)

    if include_env_vars:
        env_overrides = _load_env_overrides()
        if env_overrides:
            config = deep_merge(config, env_overrides)

    config["_active_env"] = env or os.environ.get("RF_ENV", "default")
    config["_config_source"] = base_path
    return config


def get_config_value(
    path: str,
    config: dict[str, Any] | None = None,
    default: Any = None,
) -> Any:
    """
    Get a nested config value by dotted path.

    Example:
        get_config_value("automation.bulk_threshold", cfg, 5)
    """
    if config is None:
        config = load_config()

    current = config
    for key in path.split("."):
        if isinstance(current, dict) and key in current:
            current = current[key]
        else:
            return default
    return current


# ═══════════════════════════════════════════════════════════════════
# Typed Settings
# ═══════════════════════════════════════════════════════════════════

@dataclass
class Settings:
    instance_url: str = ""
    api_key: str = ""
    timeout_seconds: float = 30.0
    stop_on_error: bool = False
    db_path: str = "recordflow.db"
    countdown_seconds: int = 3
    bulk_threshold: int = 5
    log_level: str = "INFO"

    @classmethod
    def from_config(cls, cfg: dict[str, Any]) -> Settings:
        return cls(
            instance_url=str(get_config_value("record_store.instance_url", cfg, "") or ""),
            api_key=str(get_config_value("record_store.api_key", cfg, "") or ""),
            timeout_seconds=float(get_config_value("record_store.timeout_seconds", cfg, 30)),
            stop_on_error=bool(get_config_value("execution.stop_on_error", cfg, False)),
            db_path=str(get_config_value("automation.db_path", cfg, "recordflow.db")),
            countdown_seconds=int(get_config_value("automation.countdown_seconds", cfg, 3)),
            bulk_threshold=int(get_config_value("automation.bulk_threshold", cfg, 5)),
            log_level=str(get_config_value("logging.level", cfg, "INFO")),
        )

    def __repr__(self) -> str:
        key = "***" if self.api_key else ""
        return (
            f"Settings(instance_url={self.instance_url!r}, api_key={key!r}, "
            f"db_path={self.db_path!r}, countdown_seconds={self.countdown_seconds}, "
            f"bulk_threshold={self.bulk_threshold})"
        )
