"""Configuration module for stepkeeper.

This module provides configuration loading, validation, and schema definitions.

Usage:
    from stepkeeper.config import load_config, Config

    config = load_config()  # Auto-discovers config file
    config = load_config("/path/to/config.yaml")  # Explicit path
"""

from stepkeeper.config.loader import discover_config_path, load_config, validate_config
from stepkeeper.config.schema import (
    Config,
    NotificationConfig,
    ProviderConfig,
    SensorConfig,
    StateConfig,
    TrackingConfig,
)

__all__ = [
    "Config",
    "NotificationConfig",
    "ProviderConfig",
    "SensorConfig",
    "StateConfig",
    "TrackingConfig",
    "discover_config_path",
    "load_config",
    "validate_config",
]
