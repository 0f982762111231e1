"""
Centralized configuration management.

Settings are read from, in increasing priority:
1) `env.example` (committed, safe placeholders)
2) `env.local` (optional, MUST NOT be committed)
3) System environment variables (highest priority)
"""

import os
from pathlib import Path

from dotenv import dotenv_values
from loguru import logger

_TRUE_VALUES = {"true", "1", "yes", "on"}


class EnvironConfig:
    """
    Singleton configuration class that loads environment variables from env files
    and system environment, providing dictionary-like access with default values.
    """

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(EnvironConfig, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._config = {}
            self._load_config()
            EnvironConfig._initialized = True

    def _load_config(self):
        """
        Load configuration from env files and system environment.

        Priority order (later overrides earlier):
        1. env.example (committed placeholders)
        2. env.local (developer-local, not committed)
        3. System environment variables (highest priority)
        """
        root = Path(__file__).parent.parent.parent

        example_path = root / "env.example"
        if example_path.exists():
            self._config.update(dotenv_values(example_path))
            logger.info("Loaded environment variables from {}", example_path)

        local_path = root / "env.local"
        if local_path.exists():
            self._config.update(dotenv_values(local_path))
            logger.info("Loaded and overrode environment variables from {}", local_path)

        self._config.update(os.environ)

    def __getitem__(self, key):
        """
        Get configuration value by key.

        Raises:
            KeyError: If key not found
        """
        if key not in self._config:
            raise KeyError(f"Configuration key '{key}' not found")

        return self._config[key]

    def get(self, key, default=None):
        """Get configuration value by key with optional default."""
        value = self._config.get(key)
        return default if value is None else value

    def get_str(self, key: str, default: str = "") -> str:
        """Get a stripped string value; blank values fall back to the default."""
        value = str(self.get(key, "") or "").strip()
        return value or default

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get_str(key)
        if not value:
            return default
        return value.lower() in _TRUE_VALUES

    def get_int(self, key: str, default: int, *, minimum: int | None = None) -> int:
        """
        Get an integer value.

        Invalid or out-of-range values are logged and replaced by the default.
        """
        raw = self.get_str(key)
        if not raw:
            return default
        try:
            value = int(raw)
        except ValueError:
            logger.warning("Invalid {} value '{}', defaulting to {}", key, raw, default)
            return default
        if minimum is not None and value < minimum:
            logger.warning("{} value {} is below {}, defaulting to {}", key, value, minimum, default)
            return default
        return value

    def get_float(self, key: str, default: float, *, minimum: float | None = None) -> float:
        raw = self.get_str(key)
        if not raw:
            return default
        try:
            value = float(raw)
        except ValueError:
            logger.warning("Invalid {} value '{}', defaulting to {}", key, raw, default)
            return default
        if minimum is not None and value < minimum:
            logger.warning("{} value {} is below {}, defaulting to {}", key, value, minimum, default)
            return default
        return value

    def get_list(self, key: str, default: list[str] | None = None) -> list[str]:
        """Get a comma separated list value."""
        raw = self.get_str(key)
        if not raw:
            return list(default or [])
        return [item.strip() for item in raw.split(",") if item.strip()]

    def clear(self):
        """
        Clear configuration.
        Useful for testing or when configuration files change.
        """
        self._config.clear()
        logger.info("Configuration cleared")

    def reload(self):
        """
        Reload configuration from files and environment.
        Useful for testing or when configuration files change.
        """
        self._config.clear()
        self._load_config()
        logger.info("Configuration reloaded")

    def __contains__(self, key):
        """Check if configuration key exists."""
        return key in self._config

    def __iter__(self):
        """Iterate over configuration keys."""
        return iter(self._config)

    def keys(self):
        return self._config.keys()

    def values(self):
        return self._config.values()

    def items(self):
        return self._config.items()


config = EnvironConfig()
