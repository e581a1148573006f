"""Configuration loading, validation and logging setup."""

from .config_parser import ConfigError, load_config
from .config_schema import AppConfig
from .logging_config import init_logging

__all__ = ["AppConfig", "ConfigError", "init_logging", "load_config"]
