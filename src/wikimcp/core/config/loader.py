"""
Configuration loader for YAML files.

Loads and validates configuration from YAML files into Pydantic models,
then applies the environment overrides understood by the HTTP server.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Mapping

import yaml
from pydantic import ValidationError

from .models import AppConfig

if TYPE_CHECKING:
    from typing import Any


DEFAULT_CONFIG_PATH = Path("configs/app.yaml")

# Environment variable -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "PORT": ("server", "port"),
    "HOST": ("server", "host"),
    "ALLOWED_HOSTS": ("server", "allowed_hosts"),
    "ALLOWED_ORIGINS": ("server", "allowed_origins"),
    "DNS_REBINDING_PROTECTION": ("server", "dns_rebinding_protection"),
    "WIKIMCP_TRANSPORT": ("server", "transport"),
    "WIKIMCP_LOG_LEVEL": ("logging", "level"),
    "WIKIMCP_USER_AGENT": ("fetch", "user_agent"),
}

_LIST_FIELDS = {"allowed_hosts", "allowed_origins"}
_BOOL_FIELDS = {"dns_rebinding_protection"}

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """Configuration loading or validation error."""

    def __init__(self, message: str, path: Path | None = None, details: str | None = None):
        self.path = path
        self.details = details
        super().__init__(message)


def _load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dictionary.

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}", path=path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML in {path}",
            path=path,
            details=str(e),
        ) from e
    except OSError as e:
        raise ConfigError(
            f"Cannot read {path}",
            path=path,
            details=str(e),
        ) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}", path=path)
    return data


def _expand_env_vars(data: Any, environ: Mapping[str, str]) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in string values."""
    if isinstance(data, str):
        def replacer(match: re.Match[str]) -> str:
            return environ.get(match.group(1), match.group(2) or "")

        return _ENV_VAR_PATTERN.sub(replacer, data)
    if isinstance(data, dict):
        return {k: _expand_env_vars(v, environ) for k, v in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars(item, environ) for item in data]
    return data


def _parse_env_value(field: str, raw: str) -> Any:
    if field in _LIST_FIELDS:
        return [item.strip() for item in raw.split(",") if item.strip()]
    if field in _BOOL_FIELDS:
        return raw.strip().lower() in {"1", "true", "yes", "on"}
    return raw.strip()


def apply_env_overrides(data: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overlay recognised environment variables onto raw config data."""
    merged = {k: (dict(v) if isinstance(v, dict) else v) for k, v in data.items()}
    for var, (section, field) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        if not isinstance(merged.get(section), dict):
            merged[section] = {}
        merged[section][field] = _parse_env_value(field, raw)
    return merged


def load_app_config(
    path: Path | str | None = None,
    expand_env: bool = True,
    environ: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load application configuration from YAML file.

    A missing file at the default location yields defaults; an explicit
    path must exist.

    Args:
        path: Path to app.yaml (default: configs/app.yaml)
        expand_env: Expand ${VAR} references and apply env overrides
        environ: Environment mapping (default: os.environ)

    Returns:
        Validated AppConfig instance

    Raises:
        ConfigError: If configuration is invalid
    """
    environ = os.environ if environ is None else environ

    if path is None:
        path = DEFAULT_CONFIG_PATH
        data = _load_yaml_file(path) if path.exists() else {}
    else:
        path = Path(path)
        data = _load_yaml_file(path)

    if expand_env:
        data = _expand_env_vars(data, environ)
        data = apply_env_overrides(data, environ)

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(
            f"Invalid app configuration in {path}",
            path=path,
            details=str(e),
        ) from e
