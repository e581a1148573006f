"""Configuration loading for the dohguard CLI.

Brief:
  Reads the YAML config file, applies environment overrides and validates
  the result against the pydantic models in config_schema.

Inputs:
  - YAML config path and an optional environment mapping

Outputs:
  - AppConfig instances
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from ..errors import DohGuardError
from .config_schema import AppConfig

logger = logging.getLogger(__name__)

# Environment variable -> (section, key) overrides applied after the file.
ENV_OVERRIDES = {
    "DOHGUARD_UPSTREAM_URL": ("upstream", "url"),
    "DOHGUARD_FALLBACK_URL": ("upstream", "fallback_url"),
    "DOHGUARD_LOG_LEVEL": ("logging", "level"),
}


class ConfigError(DohGuardError, ValueError):
    """Brief: Raised when the configuration file is unreadable or invalid."""


def _parse_yaml_value(text: str) -> Any:
    """Brief: Parse an environment variable value as YAML.

    Inputs:
      - text: String containing a YAML scalar/list/dict.

    Outputs:
      - Any: Parsed value (falls back to original string on parse errors).
    """

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError:
        return text


def read_config_file(path: Optional[str]) -> Dict[str, Any]:
    """Brief: Load a YAML mapping from ``path``.

    Inputs:
      - path: Config file path; None or a missing file yields {}.

    Outputs:
      - dict: Parsed mapping.

    Raises:
      - ConfigError: the file is not valid YAML or not a mapping.
    """

    if not path:
        return {}
    if not os.path.isfile(path):
        logger.warning("Config file %s not found; using defaults", path)
        return {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping")
    return data


def apply_env_overrides(
    cfg: Dict[str, Any], environ: Optional[Dict[str, str]] = None
) -> Dict[str, Any]:
    """Brief: Overlay DOHGUARD_* environment variables onto a raw config dict.

    Inputs:
      - cfg: Raw config mapping (mutated in-place).
      - environ: Optional environment mapping (defaults to os.environ).

    Outputs:
      - dict: The same mapping, for chaining.

    Example:
      >>> apply_env_overrides({}, {"DOHGUARD_LOG_LEVEL": "debug"})
      {'logging': {'level': 'debug'}}
    """

    env = os.environ if environ is None else environ
    for var, (section, key) in ENV_OVERRIDES.items():
        if var not in env:
            continue
        sect = cfg.get(section)
        if not isinstance(sect, dict):
            sect = {}
            cfg[section] = sect
        sect[key] = _parse_yaml_value(str(env[var]))
    return cfg


def load_config(
    path: Optional[str], environ: Optional[Dict[str, str]] = None
) -> AppConfig:
    """Brief: Read, override and validate the configuration.

    Inputs:
      - path: YAML config path (may be None or missing).
      - environ: Optional environment mapping.

    Outputs:
      - AppConfig: Validated configuration.

    Raises:
      - ConfigError: YAML or schema validation failure.
    """

    raw = apply_env_overrides(read_config_file(path), environ)
    try:
        return AppConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
