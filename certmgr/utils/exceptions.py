"""Exception hierarchy for certmgr.

Expected toolkit failures are reported as result values. These exceptions
cover misuse and configuration problems only.
"""

from __future__ import annotations

from typing import Any


class CertMgrError(Exception):
    """Base exception for all certmgr errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize certmgr error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ValidationError(CertMgrError):
    """Data validation errors."""


class ConfigurationError(ValidationError):
    """Configuration validation errors."""


class ToolkitError(CertMgrError):
    """Toolkit location or invocation misuse."""


class BatchError(CertMgrError):
    """Batch job misuse, e.g. running two jobs under one id."""
