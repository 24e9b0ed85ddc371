"""
Configuration management.
"""

from shared.config.logging import configure_from_settings, get_logger, setup_logging
from shared.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings", "setup_logging", "configure_from_settings", "get_logger"]
