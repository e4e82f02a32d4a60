"""Configuration management.

This module handles configuration loading and validation.
"""

from __future__ import annotations

from certmgr.config.config import (
    ConfigManager,
    get_config,
    init_config,
    reset_config,
    set_config,
)
from certmgr.models import Config

__all__ = [
    "Config",
    "ConfigManager",
    "get_config",
    "init_config",
    "reset_config",
    "set_config",
]
