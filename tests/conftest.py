"""Pytest configuration and shared fixtures for certmgr tests."""

from __future__ import annotations

import logging
import os
import sys
import textwrap
from pathlib import Path

import pytest

from certmgr.config.config import reset_config


def pytest_configure(config):
    """Register all project markers to avoid warnings when ini isn't loaded."""
    markers = [
        ("asyncio", "marks tests as async (deselect with '-m \"not asyncio\"')"),
        ("slow", "marks tests as slow (deselect with '-m \"not slow\"')"),
        ("integration", "marks tests as integration tests"),
        ("unit", "marks tests as unit tests"),
        ("executor", "marks tests as subprocess execution tests"),
        ("batch", "marks tests as batch coordination tests"),
        ("toolkits", "marks tests as toolkit adapter tests"),
        ("config", "marks tests as configuration tests"),
        ("cli", "marks tests as CLI tests"),
    ]
    for name, desc in markers:
        config.addinivalue_line("markers", f"{name}: {desc}")


@pytest.fixture(autouse=True)
def _isolate_certmgr_env(monkeypatch, tmp_path):
    """Keep user config files and CERTMGR_* variables out of tests."""
    for name in list(os.environ):
        if name.startswith("CERTMGR_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def cleanup_logging():
    """Clean up logging handlers after each test to prevent closed file errors."""
    yield
    for logger_name in list(logging.Logger.manager.loggerDict.keys()):
        logger = logging.getLogger(logger_name)
        for handler in logger.handlers[:]:
            handler.close()
            logger.removeHandler(handler)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


@pytest.fixture
def python_exe() -> str:
    """Interpreter used as a scriptable stand-in for the toolkits."""
    return sys.executable


@pytest.fixture
def write_script(tmp_path):
    """Write a child-process script and return its path as a string."""

    def _write(name: str, body: str) -> str:
        path = Path(tmp_path) / name
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return str(path)

    return _write
