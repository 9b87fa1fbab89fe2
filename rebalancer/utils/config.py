"""Configuration management for the portfolio rebalancer.

This module provides YAML configuration loading, dot-notation access, and the
validated engine settings derived from it.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from rebalancer.utils.exceptions import ConfigurationError

ROOT_DIR = Path(__file__).parent.parent.parent
DEFAULT_CONFIG_PATH = ROOT_DIR / "config" / "default.yaml"


class Config:
    """Simple configuration loader and accessor.

    Loads YAML configuration files and provides dict-like access to settings.

    Example:
        >>> config = Config.from_file("config/default.yaml")
        >>> cooldown = config.get("rebalancer.cooldown_seconds", 3600)
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

        Args:
            key: Configuration key (supports dot notation for nested keys)
            default: Default value if key not found

        Returns:
            Configuration value or default

        Example:
            >>> config.get("storage.database")
            'data/rebalancer.db'
            >>> config.get("missing.key", "fallback")
            'fallback'
        """
        value = self._config

        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def __getitem__(self, key: str) -> Any:
        """Get configuration value using bracket notation.

        Raises:
            KeyError: If key not found
        """
        value = self.get(key)
        if value is None:
            raise KeyError(f"Configuration key not found: {key}")
        return value

    def to_dict(self) -> dict[str, Any]:
        """Get the full configuration as dictionary."""
        return self._config.copy()


def load_config(filepath: str | Path = None) -> Config:
    """Helper function to load configuration.

    Args:
        filepath: Path to YAML configuration file. If None, uses default path.

    Returns:
        Config instance
    """
    if filepath is None:
        filepath = DEFAULT_CONFIG_PATH
    return Config.from_file(filepath)


def resolve_path(path: str | Path) -> Path:
    """Anchor a configured relative path at the project root.

    Paths in config files (price file, database, log directory) are written
    relative to the project root, not to the directory a script runs from.

    Example:
        >>> resolve_path("config/prices.example.yaml")
        PosixPath('/.../config/prices.example.yaml')
    """
    path = Path(path)
    if path.is_absolute():
        return path
    return ROOT_DIR / path


def load_oracle_config(config: Config | None = None) -> dict[str, Any]:
    """Resolve HTTP oracle settings from YAML plus environment overrides.

    Reads the ``.env`` file at the project root (if present) so that
    ``ORACLE_BASE_URL`` and ``ORACLE_API_KEY`` can be kept out of the YAML.

    Args:
        config: Loaded Config. If None, the default config is loaded.

    Returns:
        Dict with base_url, api_key, timeout and cache_seconds

    Raises:
        ConfigurationError: If no base URL is configured anywhere
    """
    env_file = ROOT_DIR / ".env"
    if env_file.exists():
        load_dotenv(env_file)

    if config is None:
        config = load_config()

    base_url = os.getenv("ORACLE_BASE_URL") or config.get("oracle.base_url")
    if not base_url:
        raise ConfigurationError(
            "Oracle base URL missing. Set oracle.base_url in the config "
            "or ORACLE_BASE_URL in the environment."
        )

    return {
        "base_url": base_url,
        "api_key": os.getenv("ORACLE_API_KEY") or config.get("oracle.api_key"),
        "timeout": config.get("oracle.timeout", 10),
        "cache_seconds": config.get("oracle.cache_seconds", 0),
    }


@dataclass(frozen=True)
class RebalancerSettings:
    """Engine-wide parameters.

    Attributes:
        cooldown_seconds: Minimum time between two rebalances of a portfolio
        max_price_age_seconds: Quotes older than this are stale
        min_trade_amount: Planned trades at or below this size are dropped
    """

    cooldown_seconds: int = 3600
    max_price_age_seconds: int = 3600
    min_trade_amount: int = 1_000_000

    def __post_init__(self):
        for name in ("cooldown_seconds", "max_price_age_seconds", "min_trade_amount"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigurationError(
                    f"{name} must be a non-negative integer, got {value!r}"
                )

    @classmethod
    def from_config(cls, config: Config) -> "RebalancerSettings":
        """Build settings from the ``rebalancer`` section of a Config."""
        return cls(
            cooldown_seconds=config.get("rebalancer.cooldown_seconds", 3600),
            max_price_age_seconds=config.get("rebalancer.max_price_age_seconds", 3600),
            min_trade_amount=config.get("rebalancer.min_trade_amount", 1_000_000),
        )
