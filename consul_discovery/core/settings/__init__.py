"""Pydantic Settings v2 configuration.

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. Environment variables
    3. .env file
"""

from __future__ import annotations

from .consul import ConsulSettings
from .loader import clear_all_caches, get_consul_settings, get_logging_settings
from .logs import LoggingSettings

__all__ = [
    "ConsulSettings",
    "LoggingSettings",
    "clear_all_caches",
    "get_consul_settings",
    "get_logging_settings",
]
