"""Toolkit path resolution and file name helpers."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from certmgr.executor.base import ErrorCode, OperationResult

IS_WINDOWS = sys.platform == "win32"


def resolve_keytool_path(jdk_root: str | None) -> str | None:
    """Return the keytool executable inside a JDK installation.

    macOS JDK bundles keep the real root under ``Contents/Home``; it is used
    when present and the configured root does not already point into it.
    """
    if not jdk_root:
        return None
    root = Path(jdk_root)
    bundle_home = root / "Contents" / "Home"
    if "Contents/Home" not in root.as_posix() and (bundle_home / "bin").is_dir():
        root = bundle_home
    return str(root / "bin" / ("keytool.exe" if IS_WINDOWS else "keytool"))


def check_program(
    path: str | None,
    not_configured: ErrorCode,
    failure: ErrorCode,
    display_name: str,
) -> OperationResult[str]:
    """Validate a configured executable path without running it.

    Args:
        path: Configured executable path
        not_configured: Code returned when the path is unset
        failure: Code returned when the path is unusable
        display_name: Toolkit name used in messages

    Returns:
        OperationResult carrying the path on success

    """
    if not path:
        return OperationResult.fail(
            not_configured, f"{display_name} path is not configured"
        )
    candidate = Path(path)
    if candidate.is_dir():
        return OperationResult.fail(
            failure,
            f'"{path}" is a directory; select the {display_name} executable inside it',
            "Path is a directory, not an executable file",
        )
    if not candidate.is_file():
        return OperationResult.fail(
            failure,
            f'{display_name} executable "{path}" was not found',
            f"File not found: {path}",
        )
    if not IS_WINDOWS and not os.access(candidate, os.X_OK):
        return OperationResult.fail(
            ErrorCode.PERMISSION_DENIED,
            f'{display_name} executable "{path}" is not executable',
        )
    return OperationResult.ok(str(candidate))


def normalize_extension(extension: str) -> str:
    return extension if extension.startswith(".") else f".{extension}"


def output_path_for(
    input_path: str | Path,
    output_dir: str | Path,
    extension: str,
    suffix: str = "",
) -> Path:
    """Output file for a batch item: ``<output_dir>/<stem><suffix><extension>``.

    Only the last extension of the input is dropped, so dotted names such as
    ``www.example.com.pem`` keep distinct outputs.
    """
    stem = Path(input_path).stem
    return Path(output_dir) / f"{stem}{suffix}{normalize_extension(extension)}"
