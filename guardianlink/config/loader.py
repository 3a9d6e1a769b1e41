"""
GuardianLink Configuration Loader

Reads ~/.guardianlink/config.yaml (or an explicit path), validates it
against GuardianConfig and caches the result for the process.

A missing file yields the defaults. A file that fails to parse or
validate raises ConfigError with the underlying message.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from guardianlink.config.models import GuardianConfig, SeedRulesConfig

logger = logging.getLogger(__name__)

USER_CONFIG_PATH = Path.home() / ".guardianlink" / "config.yaml"

_config_cache: Optional[GuardianConfig] = None


class ConfigError(Exception):
    """Raised when a configuration file cannot be parsed or validated."""


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Could not read {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return data


def load_config(path: Optional[Path] = None) -> GuardianConfig:
    """Load and validate engine configuration.

    Args:
        path: Explicit config file. Defaults to ~/.guardianlink/config.yaml.

    Raises:
        ConfigError: if the file exists but is not valid.
    """
    config_path = Path(path) if path else USER_CONFIG_PATH
    if not config_path.exists():
        if path:
            raise ConfigError(f"Config file not found: {config_path}")
        return GuardianConfig()

    data = _read_yaml(config_path)
    try:
        return GuardianConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_path}:\n{e}") from e


def load_seed_rules(path: Path) -> SeedRulesConfig:
    """Load and validate a heuristics.yaml seed rule file."""
    data = _read_yaml(Path(path))
    try:
        return SeedRulesConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid seed rules in {path}:\n{e}") from e


def get_config() -> GuardianConfig:
    """Get the process-wide configuration, loading it on first use."""
    global _config_cache
    if _config_cache is None:
        _config_cache = load_config()
        logger.debug("Loaded configuration from %s", USER_CONFIG_PATH)
    return _config_cache


def reset_config() -> None:
    """Drop the cached configuration (for testing)."""
    global _config_cache
    _config_cache = None
