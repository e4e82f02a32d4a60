"""Tests for logging setup and scratch file management."""

from __future__ import annotations

import json
import logging
import sys

import pytest

pytestmark = [pytest.mark.unit]

from certmgr.models import LogLevel, ObservabilityConfig
from certmgr.utils.logging_config import (
    LoggingContext,
    StructuredFormatter,
    get_correlation_id,
    get_logger,
    set_correlation_id,
    setup_logging,
)
from certmgr.utils.tempfiles import TempFileManager


class TestLogging:
    """Test logging configuration."""

    def test_setup_logging_with_file(self, tmp_path):
        log_file = tmp_path / "logs" / "certmgr.log"
        setup_logging(
            ObservabilityConfig(
                log_level=LogLevel.DEBUG, log_file=str(log_file), structured_logging=True
            )
        )

        logger = get_logger("tests")
        logger.info("hello %s", "world", extra={"job_id": "job-9"})
        for handler in logging.getLogger("certmgr").handlers:
            handler.flush()

        record = json.loads(log_file.read_text(encoding="utf-8").splitlines()[-1])
        assert record["message"] == "hello world"
        assert record["logger"] == "certmgr.tests"
        assert record["job_id"] == "job-9"
        assert record["correlation_id"]

    def test_certmgr_logger_does_not_propagate(self):
        setup_logging(ObservabilityConfig())
        certmgr_logger = logging.getLogger("certmgr")
        assert certmgr_logger.propagate is False
        assert certmgr_logger.level == logging.INFO
        assert certmgr_logger.handlers

    def test_structured_formatter_exception(self):
        try:
            raise ValueError("bad")
        except ValueError:
            exc_info = sys.exc_info()
        record = logging.LogRecord(
            "certmgr.x", logging.ERROR, __file__, 1, "failed", None, exc_info
        )
        entry = json.loads(StructuredFormatter().format(record))
        assert "ValueError: bad" in entry["exception"]

    def test_correlation_id(self):
        assert set_correlation_id("abc") == "abc"
        assert get_correlation_id() == "abc"

    def test_logging_context_scopes_correlation_id(self):
        outer = set_correlation_id("outer")
        with LoggingContext("batch_run", job_id="j") as ctx:
            assert get_correlation_id() not in (None, outer)
        assert get_correlation_id() == outer
        assert ctx.duration >= 0

    def test_logging_context_reraises(self):
        with pytest.raises(RuntimeError), LoggingContext("op"):
            raise RuntimeError("boom")


class TestTempFileManager:
    """Test scratch file allocation and cleanup."""

    def test_unique_names(self, tmp_path):
        manager = TempFileManager("scratch", base_dir=tmp_path)
        first = manager.allocate("cert.pem")
        second = manager.allocate("cert.pem")
        assert first != second
        assert first.parent == tmp_path / "scratch"
        assert first.name.endswith("_cert.pem")
        assert first.name.split("_")[0].isdigit()

    def test_scratch_file_removed(self, tmp_path):
        manager = TempFileManager(base_dir=tmp_path)
        with manager.scratch_file("x.pem") as path:
            path.write_text("data", encoding="utf-8")
            assert path.exists()
        assert not path.exists()

    def test_remove_missing_is_silent(self, tmp_path):
        TempFileManager(base_dir=tmp_path).remove(tmp_path / "never-created")
