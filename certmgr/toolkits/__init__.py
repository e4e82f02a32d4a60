"""Adapters for the openssl and keytool command-line toolkits."""

from __future__ import annotations

from certmgr.toolkits.format_detector import DetectionResult, FileFormatDetector
from certmgr.toolkits.keytool import KeytoolToolkit
from certmgr.toolkits.openssl import OpenSSLToolkit
from certmgr.toolkits.paths import check_program, resolve_keytool_path

__all__ = [
    "DetectionResult",
    "FileFormatDetector",
    "KeytoolToolkit",
    "OpenSSLToolkit",
    "check_program",
    "resolve_keytool_path",
]
