"""Runtime configuration loading.

The YAML file maps directly onto RuntimeConfig. Any string value may refer to
environment variables as ``${NAME}``; every reference must resolve.

Example config:

    client:
      connect_timeout: 10
      read_timeout: 20
      transport: auto
    traffic:
      store_path: ${HOME}/.rest-command/traffic.json
      skip_interval: 50
      connection_class: wifi
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from rest_command.models import RuntimeConfig


class ConfigError(Exception):
    """Raised when the runtime configuration cannot be loaded."""


_ENV_REFERENCE = re.compile(r"\$\{([^}]+)\}")


def load_runtime_config(config_path: str | os.PathLike) -> RuntimeConfig:
    """Read, expand and validate a runtime config file.

    An empty file yields the default configuration.

    Raises:
        ConfigError: If the file is missing, is not a YAML mapping, references
            an unset environment variable, or does not validate.
    """
    document = _read_yaml(Path(config_path))
    try:
        return RuntimeConfig.model_validate(_expand(document))
    except ValidationError as e:
        raise ConfigError(f"Invalid config structure: {e}") from e


def _read_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if document is None:
        return {}
    if not isinstance(document, dict):
        raise ConfigError(f"{path} must contain a YAML mapping, got {type(document).__name__}")
    return document


def _expand(value: Any) -> Any:
    """Resolve ${NAME} references in every string nested in value."""
    if isinstance(value, dict):
        return {key: _expand(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand(item) for item in value]
    if isinstance(value, str):
        return _ENV_REFERENCE.sub(_env_value, value)
    return value


def _env_value(match: re.Match) -> str:
    name = match.group(1)
    try:
        return os.environ[name]
    except KeyError:
        raise ConfigError(f"Environment variable '{name}' is not set") from None
