"""
config/ — RecoChat Configuration

Public API:
    from recochat.config import Settings, load_settings, get_settings, ConfigError
"""

from recochat.config.settings import ConfigError, Settings, get_settings, load_settings

__all__ = [
    "ConfigError",
    "Settings",
    "get_settings",
    "load_settings",
]
