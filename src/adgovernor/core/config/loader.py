"""
YAML configuration loading.

``configs/app.yaml`` is optional: without it every setting takes its
default, and the token and tier come from the environment. String values
may reference the environment as ``${VAR}`` or ``${VAR:-fallback}``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .models import AppConfig

DEFAULT_CONFIG_PATH = Path("configs/app.yaml")

_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """A configuration file could not be read, parsed or validated."""

    def __init__(self, message: str, path: Path | None = None, details: str | None = None):
        super().__init__(message)
        self.path = path
        self.details = details


def _read_mapping(path: Path) -> dict[str, Any]:
    """Parse a YAML file whose top level must be a mapping (empty file is ``{}``).

    Raises:
        ConfigError: Missing, unreadable, malformed or non-mapping file
    """
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}", path=path)

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}", path=path, details=str(e)) from e
    except OSError as e:
        raise ConfigError(f"Cannot read {path}", path=path, details=str(e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping", path=path)
    return data


def _expand_env_vars(data: Any) -> Any:
    """Substitute environment references in every string, at any depth.

    An unset variable without a fallback becomes the empty string.
    """
    if isinstance(data, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), data)
    if isinstance(data, dict):
        return {key: _expand_env_vars(value) for key, value in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    return data


def _build(data: dict[str, Any], expand_env: bool) -> AppConfig:
    return AppConfig.model_validate(_expand_env_vars(data) if expand_env else data)


def load_app_config(
    path: Path | str | None = None,
    expand_env: bool = True,
) -> AppConfig:
    """Load and validate the application configuration.

    Args:
        path: YAML file (default: configs/app.yaml); a missing file yields defaults
        expand_env: Substitute ``${VAR}`` references before validation

    Returns:
        The validated configuration

    Raises:
        ConfigError: The file exists but is malformed or fails validation
    """
    path = DEFAULT_CONFIG_PATH if path is None else Path(path)
    if not path.exists():
        return AppConfig()

    data = _read_mapping(path)
    try:
        return _build(data, expand_env)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid app configuration in {path}",
            path=path,
            details=str(e),
        ) from e


def validate_config_file(path: Path | str) -> list[str]:
    """Check a configuration file and describe every problem found.

    Unlike :func:`load_app_config`, a missing file is an error here.

    Returns:
        ``"field.path: message"`` strings, or a single file-level message;
        empty when the file is valid
    """
    path = Path(path)

    try:
        _build(_read_mapping(path), expand_env=True)
    except ConfigError as e:
        return [str(e)]
    except ValidationError as e:
        return [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]

    return []
