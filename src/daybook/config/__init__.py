"""Configuration module for daybook."""

from daybook.config.logging import configure_logging
from daybook.config.settings import FlatSettings, get_settings

__all__ = ["FlatSettings", "get_settings", "configure_logging"]
