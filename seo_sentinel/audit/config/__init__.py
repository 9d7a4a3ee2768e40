"""Configuration loading with YAML files and environment overrides."""

from .loader import (
    BaselineStoreConfig,
    BrowserSettings,
    ConfigLoadError,
    LoggingConfig,
    SentinelConfig,
    create_default_config,
    load_config,
    save_default_config,
)

__all__ = [
    "BaselineStoreConfig",
    "BrowserSettings",
    "ConfigLoadError",
    "LoggingConfig",
    "SentinelConfig",
    "create_default_config",
    "load_config",
    "save_default_config",
]
