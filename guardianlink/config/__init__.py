"""GuardianLink configuration module."""

from pathlib import Path

from .loader import ConfigError, load_config, get_config, reset_config

CONFIG_DIR = Path(__file__).parent
SEED_RULES_FILE = CONFIG_DIR / "heuristics.yaml"

__all__ = [
    "ConfigError", "load_config", "get_config", "reset_config",
    "CONFIG_DIR", "SEED_RULES_FILE",
    "GuardianConfig", "SeedRulesConfig",
]

# Lazy imports for Pydantic models to avoid import cost when not needed
def __getattr__(name):
    if name in ("GuardianConfig", "SeedRulesConfig"):
        from guardianlink.config.models import GuardianConfig, SeedRulesConfig
        return {"GuardianConfig": GuardianConfig, "SeedRulesConfig": SeedRulesConfig}[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
