"""
Configuration loader for randcache.

Reads configs/config.yaml and provides a single dict accessible
throughout the project. All tunable parameters live in that file;
the built-in DEFAULTS below apply when a key (or the whole file) is missing.
"""

import copy
import os
from pathlib import Path
import yaml


# Project root = two levels up from this file (randcache/utils/config.py → repo root)
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "configs" / "config.yaml"
CONFIG_ENV_VAR = "RANDCACHE_CONFIG"

DEFAULTS = {
    "random_seed": None,
    "cache": {
        "default_size": 20,
        "small_size": 10,
        "retry_initial_seconds": 0.05,
        "retry_max_seconds": 5.0,
    },
    "stream": {
        "cache_size": 2,
        "blob_bits": 256,
        "poll_interval_seconds": 0.1,
        "health_check": False,
        "health_alpha": 0.01,
    },
    "local_source": {
        "bits_allowance": None,
        "requests_allowance": None,
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    },
}


def load_config(config_path: str | Path | None = None) -> dict:
    """Load YAML configuration file and return as a dictionary.

    Args:
        config_path: Path to config file. Defaults to configs/config.yaml.

    Returns:
        Configuration dictionary (empty if the file holds no mapping).
    """
    config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        config = yaml.safe_load(f)

    return config or {}


def merge_config(base: dict, override: dict) -> dict:
    """Recursively merge `override` into a copy of `base`."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


# Singleton: loaded once, imported everywhere
_config = None


def get_config() -> dict:
    """Return the cached configuration (loads on first call)."""
    global _config
    if _config is None:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            _config = merge_config(DEFAULTS, load_config(env_path))
        elif DEFAULT_CONFIG_PATH.exists():
            _config = merge_config(DEFAULTS, load_config())
        else:
            _config = copy.deepcopy(DEFAULTS)
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads it."""
    global _config
    _config = None
