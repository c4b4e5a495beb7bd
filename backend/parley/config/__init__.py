"""Configuration module for Parley."""

from parley.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
