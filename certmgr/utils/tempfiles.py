"""Scratch file management for toolkit operations.

Toolkit adapters sometimes need an intermediate file (e.g. a PEM extracted
from a PKCS#12 container before it can be inspected). Names are unique per
call and removal never fails the operation that created them.
"""

from __future__ import annotations

import contextlib
import logging
import tempfile
import time
import uuid
from collections.abc import Iterator
from pathlib import Path

logger = logging.getLogger(__name__)


class TempFileManager:
    """Allocates and removes scratch files under one temp directory."""

    def __init__(self, dir_name: str = "certmgr-temp", base_dir: str | Path | None = None):
        """Initialize temp file manager.

        Args:
            dir_name: Directory created under ``base_dir``
            base_dir: Parent directory, defaults to the system temp dir

        """
        root = Path(base_dir) if base_dir is not None else Path(tempfile.gettempdir())
        self.directory = root / dir_name

    def allocate(self, file_name: str) -> Path:
        """Return a fresh path for ``file_name``; the file is not created."""
        self.directory.mkdir(parents=True, exist_ok=True)
        stamp = int(time.time() * 1000)
        return self.directory / f"{stamp}_{uuid.uuid4().hex[:8]}_{Path(file_name).name}"

    def remove(self, path: str | Path) -> None:
        """Delete a scratch file, logging and ignoring any failure."""
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.debug("Could not remove temp file %s: %s", path, e)

    @contextlib.contextmanager
    def scratch_file(self, file_name: str) -> Iterator[Path]:
        """Context manager yielding a scratch path removed on exit."""
        path = self.allocate(file_name)
        try:
            yield path
        finally:
            self.remove(path)
