"""Configuration and logging for the economy core."""

from .logging import get_logger, setup_logging
from .settings import EconomySettings, get_settings

__all__ = ["EconomySettings", "get_settings", "setup_logging", "get_logger"]
