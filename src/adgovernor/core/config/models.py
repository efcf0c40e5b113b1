"""
Pydantic configuration models for AdGovernor.

These models provide type-safe configuration with validation for:
- Graph API endpoint and credentials
- Rate limit tier selection
- Pagination and batching defaults
- Logging
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator


# =============================================================================
# Enums
# =============================================================================


class RateLimitTier(str, Enum):
    """Remote API access tiers with distinct throughput budgets."""

    DEVELOPMENT = "development"
    STANDARD = "standard"


def _tier_from_env() -> RateLimitTier:
    if os.environ.get("META_API_TIER", "").strip().lower() == RateLimitTier.DEVELOPMENT.value:
        return RateLimitTier.DEVELOPMENT
    return RateLimitTier.STANDARD


def _token_from_env() -> SecretStr | None:
    token = os.environ.get("META_ACCESS_TOKEN")
    return SecretStr(token) if token else None


# =============================================================================
# API Configuration
# =============================================================================


class ApiConfig(BaseModel):
    """Graph API endpoint and credential settings."""

    base_url: str = Field(
        default="https://graph.facebook.com",
        description="Graph API base URL",
    )
    api_version: str = Field(
        default="v23.0",
        description="Graph API version path segment",
    )
    access_token: SecretStr | None = Field(
        default_factory=_token_from_env,
        description="Opaque access token (default: $META_ACCESS_TOKEN)",
    )
    timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Request timeout in seconds",
    )
    user_agent: str = Field(
        default="adgovernor/0.1.0",
        description="User-Agent header sent with every request",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("access_token", mode="before")
    @classmethod
    def empty_token_is_none(cls, v: Any) -> Any:
        """Treat an empty string (e.g. unset ${VAR}) as no token."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def versioned_url(self) -> str:
        return f"{self.base_url}/{self.api_version}"


# =============================================================================
# Governor Configuration
# =============================================================================


class RateLimitSettings(BaseModel):
    """Rate limiter tier selection."""

    tier: RateLimitTier = Field(
        default_factory=_tier_from_env,
        description="Throughput tier (default: $META_API_TIER, else standard)",
    )


class PaginationSettings(BaseModel):
    """Defaults for page traversal and batched submission."""

    max_pages: int = Field(
        default=100,
        ge=1,
        le=10000,
        description="Page ceiling for lazy traversal",
    )
    collect_max_pages: int = Field(
        default=50,
        ge=1,
        le=10000,
        description="Page ceiling for eager collection",
    )
    max_items: int = Field(
        default=5000,
        ge=1,
        description="Item ceiling for eager collection",
    )
    batch_size: int = Field(
        default=50,
        ge=1,
        le=1000,
        description="Items per submitted batch",
    )
    batch_delay_ms: int = Field(
        default=1000,
        ge=0,
        description="Delay between batch submissions in milliseconds",
    )


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR)",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for file logs",
    )
    rich_console: bool = Field(
        default=True,
        description="Use Rich for console output",
    )

    @field_validator("level")
    @classmethod
    def known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(BaseModel):
    """Root application configuration.

    This is the main configuration object loaded from app.yaml.
    """

    api: ApiConfig = Field(default_factory=ApiConfig)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    pagination: PaginationSettings = Field(default_factory=PaginationSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
