"""Configuration management module."""

from .config_manager import ConfigManager
from .settings import MockingConfig

__all__ = ["ConfigManager", "MockingConfig"]
