"""Shared utilities and infrastructure.

This module contains exceptions, logging setup, secret redaction and temp
file handling used throughout the package.
"""

from __future__ import annotations

from certmgr.utils.exceptions import (
    BatchError,
    CertMgrError,
    ConfigurationError,
    ToolkitError,
    ValidationError,
)
from certmgr.utils.logging_config import get_logger, setup_logging
from certmgr.utils.sanitize import mask_password, sanitize_log, sanitize_path

__all__ = [
    "BatchError",
    "CertMgrError",
    "ConfigurationError",
    "ToolkitError",
    "ValidationError",
    "get_logger",
    "mask_password",
    "sanitize_log",
    "sanitize_path",
    "setup_logging",
]
