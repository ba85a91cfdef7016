"""Configuration loading and validation."""

from .models import (
    # Enums
    TransportType,
    # Config models
    AppConfig,
    CacheConfig,
    FetchConfig,
    LoggingConfig,
    ServerConfig,
)
from .loader import ConfigError, load_app_config

__all__ = [
    # Enums
    "TransportType",
    # Config models
    "AppConfig",
    "CacheConfig",
    "FetchConfig",
    "LoggingConfig",
    "ServerConfig",
    # Loaders
    "ConfigError",
    "load_app_config",
]
