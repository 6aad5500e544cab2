"""Configuration loading and schema."""

from novel_reader.config.loader import load_config
from novel_reader.config.schema import AppConfig, AppConfigRoot

__all__ = ["AppConfig", "AppConfigRoot", "load_config"]
