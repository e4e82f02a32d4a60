"""certmgr - subprocess orchestration for openssl and keytool."""

from __future__ import annotations

__version__ = "0.1.0"
