"""Tests for toolkit path validation and output naming."""

from __future__ import annotations

from pathlib import Path

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.toolkits]

from certmgr.executor.base import ErrorCode
from certmgr.toolkits.paths import (
    check_program,
    normalize_extension,
    output_path_for,
)


def check(path):
    return check_program(
        path, ErrorCode.OPENSSL_NOT_CONFIGURED, ErrorCode.OPENSSL_EXECUTION_FAILED, "OpenSSL"
    )


class TestCheckProgram:
    """Test executable validation without spawning."""

    def test_unset(self):
        assert check(None).error.code is ErrorCode.OPENSSL_NOT_CONFIGURED

    def test_missing(self, tmp_path):
        result = check(str(tmp_path / "openssl"))
        assert result.error.code is ErrorCode.OPENSSL_EXECUTION_FAILED
        assert "not found" in result.error.message

    def test_not_executable(self, tmp_path):
        path = tmp_path / "openssl"
        path.write_text("", encoding="utf-8")
        path.chmod(0o644)
        assert check(str(path)).error.code is ErrorCode.PERMISSION_DENIED

    def test_ok(self, tmp_path):
        path = tmp_path / "openssl"
        path.write_text("", encoding="utf-8")
        path.chmod(0o755)
        result = check(str(path))
        assert result.success is True
        assert result.data == str(path)


class TestFileNames:
    """Test file name helpers."""

    def test_normalize_extension(self):
        assert normalize_extension("der") == ".der"
        assert normalize_extension(".pem") == ".pem"

    def test_output_path_for(self):
        assert output_path_for("/in/server.crt", "/out", ".pem", suffix="_public") == Path(
            "/out/server_public.pem"
        )

    def test_output_path_for_dotted_names(self):
        """Only the last extension is replaced, so distinct inputs stay distinct."""
        assert output_path_for("www.example.com.pem", "/out", ".der") == Path(
            "/out/www.example.com.der"
        )
        assert output_path_for("www.example.org.pem", "/out", "der") == Path(
            "/out/www.example.org.der"
        )
        assert output_path_for("my.cert.pem", "/out", ".pem", suffix="_public") == Path(
            "/out/my.cert_public.pem"
        )
