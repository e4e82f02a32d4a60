"""Secret redaction helpers.

Every command line and toolkit message that reaches a log record or an
error string passes through these functions first.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

REDACTED = "[REDACTED]"

_SENSITIVE_PATTERNS = [
    re.compile(r"password[=:]\s*\S+", re.IGNORECASE),
    re.compile(r"pass[=:]\s*\S+", re.IGNORECASE),
    re.compile(r"-passin\s+\S+", re.IGNORECASE),
    re.compile(r"-passout\s+\S+", re.IGNORECASE),
    re.compile(
        r"-----BEGIN\s+(?:RSA\s+)?PRIVATE\s+KEY-----.*?-----END\s+(?:RSA\s+)?PRIVATE\s+KEY-----",
        re.IGNORECASE | re.DOTALL,
    ),
    re.compile(
        r"-----BEGIN\s+ENCRYPTED\s+PRIVATE\s+KEY-----.*?-----END\s+ENCRYPTED\s+PRIVATE\s+KEY-----",
        re.IGNORECASE | re.DOTALL,
    ),
]


def sanitize_log(text: str) -> str:
    """Redact password assignments and private key blocks from free text."""
    for pattern in _SENSITIVE_PATTERNS:
        text = pattern.sub(REDACTED, text)
    return text


def is_secret_flag(arg: str) -> bool:
    """Return True for flags whose following argument is a secret.

    Matches ``-storepass``, ``-keypass``, ``-srcstorepass``, ``-passin`` and
    any other flag containing "pass".
    """
    return arg.startswith("-") and "pass" in arg.lower()


def sanitize_args(args: Sequence[str]) -> list[str]:
    """Return a copy of ``args`` safe for logging.

    The argument following a password flag is replaced with ``[REDACTED]``;
    every other argument goes through :func:`sanitize_log`.
    """
    sanitized: list[str] = []
    redact_next = False
    for arg in args:
        if redact_next:
            sanitized.append(REDACTED)
            redact_next = False
            continue
        sanitized.append(sanitize_log(arg))
        redact_next = is_secret_flag(arg)
    return sanitized


def sanitize_path(full_path: str) -> str:
    """Shorten a path to its file name for user-facing messages."""
    parts = re.split(r"[/\\]", full_path)
    if len(parts) <= 2:
        return full_path
    return f".../{parts[-1]}"


def sanitize_error(error: BaseException | str | object) -> str:
    """Return a redacted message for an exception or error string."""
    if isinstance(error, BaseException):
        return sanitize_log(str(error))
    if isinstance(error, str):
        return sanitize_log(error)
    return "Unknown error"


def mask_password(password: str | None) -> str:
    """Mask a password for display, never revealing its real length past 8."""
    if not password:
        return ""
    return "*" * min(len(password), 8)
