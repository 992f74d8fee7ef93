"""Configuration module for WebMetrikks."""

from webmetrikks.config.settings import (
    GeoIPSettings,
    LogParserSettings,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "get_settings",
    "GeoIPSettings",
    "LogParserSettings",
]
