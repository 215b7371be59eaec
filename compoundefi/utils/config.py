"""Configuration management for CompounDefi.

This module provides simple YAML configuration loading and access, plus
environment overrides for the execution engine and auto-optimizer.
"""

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from compoundefi.utils.exceptions import ConfigurationError

# Environment variable -> dotted config key
ENV_OVERRIDES = {
    "COMPOUNDEFI_STORE_PATH": "storage.path",
    "COMPOUNDEFI_STORE_BACKEND": "storage.backend",
    "COMPOUNDEFI_LOG_LEVEL": "logging.level",
    "COMPOUNDEFI_BASE_UNIT_SCALE": "execution.base_unit_scale",
}


class Config:
    """Simple configuration loader and accessor.

    Loads YAML configuration files and provides dict-like access to settings.

    Example:
        >>> config = Config.from_file("config/default.yaml")
        >>> interval = config.get("optimizer.interval_hours", 24)
    """

    def __init__(self, config_dict: dict[str, Any]) -> None:
        """Initialize with configuration dictionary.

        Args:
            config_dict: Configuration data as nested dictionary
        """
        self._config = config_dict

    @classmethod
    def from_file(cls, filepath: str | Path) -> "Config":
        """Load configuration from YAML file.

        Args:
            filepath: Path to YAML configuration file

        Returns:
            Config instance with loaded configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        path = Path(filepath)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {filepath}")

        with open(path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f)

        if config_dict is None:
            config_dict = {}

        return cls(config_dict)

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Supports nested keys using dot notation (e.g., "optimizer.interval_hours").

        Args:
            key: Configuration key (supports dot notation for nested keys)
            default: Default value if key not found

        Returns:
            Configuration value or default

        Example:
            >>> config.get("storage.path")
            'data/optimizer_state.json'
            >>> config.get("missing.key", "fallback")
            'fallback'
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value using dot notation.

        Intermediate sections are created as needed.

        Args:
            key: Configuration key (supports dot notation)
            value: Value to store
        """
        keys = key.split(".")
        section = self._config
        for k in keys[:-1]:
            if not isinstance(section.get(k), dict):
                section[k] = {}
            section = section[k]
        section[keys[-1]] = value

    def __getitem__(self, key: str) -> Any:
        """Get configuration value using bracket notation.

        Args:
            key: Configuration key (supports dot notation)

        Returns:
            Configuration value

        Raises:
            KeyError: If key not found
        """
        value = self.get(key)
        if value is None:
            raise KeyError(f"Configuration key not found: {key}")
        return value

    def to_dict(self) -> dict[str, Any]:
        """Get the full configuration as dictionary.

        Returns:
            Complete configuration dictionary
        """
        return self._config.copy()


def load_config(filepath: str | Path = None) -> Config:
    """Helper function to load configuration.

    Args:
        filepath: Path to YAML configuration file. If None, uses default path.

    Returns:
        Config instance
    """
    if filepath is None:
        # Use absolute path to default config relative to project root
        root_dir = Path(__file__).parent.parent.parent
        filepath = root_dir / "config" / "default.yaml"
    return Config.from_file(filepath)


def load_optimizer_config(
    config_file: str | Path = None,
    env_file: str | Path = None,
) -> Config:
    """Load engine configuration from YAML and environment variables.

    The YAML file supplies defaults; variables listed in ``ENV_OVERRIDES``
    (optionally read from a .env file) replace individual keys.

    Args:
        config_file: Path to YAML file. If None, uses config/default.yaml.
        env_file: Path to .env file. If None, only the process environment
            is consulted.

    Returns:
        Validated Config object

    Raises:
        FileNotFoundError: If the config file is missing
        ConfigurationError: If a value is out of range

    Example:
        >>> config = load_optimizer_config()
        >>> scale = config.get("execution.base_unit_scale")
    """
    if env_file is not None:
        load_dotenv(env_file)

    config = load_config(config_file)

    for env_var, key in ENV_OVERRIDES.items():
        raw = os.getenv(env_var)
        if raw:
            config.set(key, raw)

    validate_config(config)
    return config


def validate_config(config: Config) -> None:
    """Validate numeric ranges of the engine configuration.

    Args:
        config: Configuration to validate

    Raises:
        ConfigurationError: If any value is invalid
    """
    positive_keys = [
        ("execution.base_unit_scale", 100_000_000),
        ("optimizer.interval_hours", 24),
        ("optimizer.poll_interval_seconds", 60),
        ("optimizer.history_limit", 10),
    ]
    non_negative_keys = [
        ("execution.inter_operation_delay_seconds", 1.0),
        ("optimizer.drift_threshold_percent", 5.0),
        ("optimizer.max_slippage_percent", 1.0),
        ("planning.amount_precision", 2),
    ]

    for key, default in positive_keys:
        value = _as_number(config, key, default)
        if value <= 0:
            raise ConfigurationError(f"{key} must be positive, got {value}")

    for key, default in non_negative_keys:
        value = _as_number(config, key, default)
        if value < 0:
            raise ConfigurationError(f"{key} must be non-negative, got {value}")

    backend = config.get("storage.backend", "json")
    if backend not in ("memory", "json", "sqlite"):
        raise ConfigurationError(
            f"storage.backend must be one of memory, json, sqlite; got {backend!r}"
        )


def _as_number(config: Config, key: str, default: Any) -> float:
    value = config.get(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be numeric, got {value!r}") from e
    # Write back the parsed value so env overrides (strings) come out typed
    config.set(key, int(number) if isinstance(default, int) else number)
    return number
