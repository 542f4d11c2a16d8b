"""Configuration module for semstore."""

from semstore.config.logging import configure_logging, get_logger
from semstore.config.settings import Settings, get_settings

__all__ = ["Settings", "configure_logging", "get_logger", "get_settings"]
