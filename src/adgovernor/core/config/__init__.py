"""Configuration loading and validation."""

from .models import (
    # Enums
    RateLimitTier,
    # Config models
    ApiConfig,
    AppConfig,
    LoggingConfig,
    PaginationSettings,
    RateLimitSettings,
)
from .loader import ConfigError, load_app_config, validate_config_file

__all__ = [
    # Enums
    "RateLimitTier",
    # Config models
    "ApiConfig",
    "AppConfig",
    "LoggingConfig",
    "PaginationSettings",
    "RateLimitSettings",
    # Loaders
    "ConfigError",
    "load_app_config",
    "validate_config_file",
]
