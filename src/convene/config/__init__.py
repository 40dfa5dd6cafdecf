"""Configuration management."""

from convene.config.manager import ConfigManager
from convene.config.schema import ConveneConfig

__all__ = ["ConfigManager", "ConveneConfig"]
