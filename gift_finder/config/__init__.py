"""Configuration module for Gift Finder."""

from gift_finder.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
