"""Tests for one-shot command execution."""

from __future__ import annotations

import asyncio

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.executor]

from certmgr.executor.base import CommandInvocation, CommandResult, ErrorKind, classify_failure
from certmgr.executor.command_executor import CommandExecutor, build_env, format_command
from certmgr.utils.sanitize import REDACTED


class TestFormatCommand:
    """Test command line rendering for logs."""

    def test_storepass_value_redacted(self):
        """The argument after -storepass never reaches the log line."""
        line = format_command(
            "/usr/bin/keytool", ["-list", "-keystore", "trust.jks", "-storepass", "secretValue"]
        )
        assert "secretValue" not in line
        assert REDACTED in line
        assert line.startswith("/usr/bin/keytool -list -keystore trust.jks -storepass")

    def test_every_pass_flag_redacted(self):
        """Flags like -srcstorepass and -keypass are treated as secret flags."""
        line = format_command(
            "keytool",
            ["-srcstorepass", "one", "-destkeypass", "two", "-alias", "server"],
        )
        assert "one" not in line.split()
        assert "two" not in line.split()
        assert line.endswith("-alias server")

    def test_inline_pass_argument_redacted(self):
        """openssl style pass:value arguments are redacted too."""
        line = format_command("openssl", ["pkcs12", "-passin", "pass:hunter2"])
        assert "hunter2" not in line

    def test_parts_with_spaces_quoted(self):
        """Parts containing spaces are quoted."""
        line = format_command("/opt/My Tools/openssl", ["version"])
        assert line == '"/opt/My Tools/openssl" version'


class TestBuildEnv:
    """Test environment overlay."""

    def test_no_overlay_inherits(self):
        assert build_env(None) is None
        assert build_env({}) is None

    def test_overlay_extends_environment(self, monkeypatch):
        monkeypatch.setenv("CERTMGR_INHERITED", "1")
        env = build_env({"EXTRA": "2"})
        assert env["CERTMGR_INHERITED"] == "1"
        assert env["EXTRA"] == "2"


class TestCommandExecutor:
    """Test CommandExecutor against real child processes."""

    @pytest.fixture
    def executor(self):
        return CommandExecutor(default_timeout=10.0)

    @pytest.mark.asyncio
    async def test_captures_stdout_and_stderr(self, executor, python_exe):
        """Both streams are captured and exit code 0 means success."""
        result = await executor.execute(
            python_exe,
            ["-c", "import sys; print('out'); print('err', file=sys.stderr)"],
        )
        assert result.success is True
        assert result.exit_code == 0
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.error is None
        assert executor.active_watchdogs == 0

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, executor, python_exe):
        """A non-zero exit fails with stderr as the message."""
        result = await executor.execute(
            python_exe, ["-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"]
        )
        assert result.success is False
        assert result.exit_code == 3
        assert result.error == "boom"
        assert result.error_kind is ErrorKind.EXECUTION
        assert result.timed_out is False

    @pytest.mark.asyncio
    async def test_nonzero_exit_without_stderr(self, executor, python_exe):
        result = await executor.execute(python_exe, ["-c", "raise SystemExit(2)"])
        assert result.error == "Command exited with code 2"

    @pytest.mark.asyncio
    async def test_auth_failure_classified(self, executor, python_exe):
        """Rejected secrets are classified from stderr phrases."""
        result = await executor.execute(
            python_exe,
            [
                "-c",
                "import sys; sys.stderr.write('Mac verify error: invalid password?'); sys.exit(1)",
            ],
        )
        assert result.error_kind is ErrorKind.AUTHENTICATION

    @pytest.mark.asyncio
    async def test_timeout_kills_exactly_once(self, executor, python_exe, monkeypatch):
        """A run outliving its timeout is killed once and keeps partial output."""
        kills: list[int] = []
        original_kill = asyncio.subprocess.Process.kill

        def counting_kill(self):
            kills.append(self.pid)
            original_kill(self)

        monkeypatch.setattr(asyncio.subprocess.Process, "kill", counting_kill)

        result = await executor.execute(
            python_exe,
            ["-c", "import sys, time; print('started', flush=True); time.sleep(30)"],
            timeout=0.5,
        )

        assert result.success is False
        assert result.timed_out is True
        assert result.exit_code is None
        assert result.error_kind is ErrorKind.TIMEOUT
        assert "timed out" in result.error
        assert "started" in result.stdout
        assert len(kills) == 1
        assert executor.active_watchdogs == 0

    @pytest.mark.asyncio
    async def test_zero_timeout_expires_immediately(self, executor, python_exe):
        """An explicit zero timeout is honoured, not replaced by the default."""
        result = await executor.execute(
            python_exe, ["-c", "import time; time.sleep(1.5)"], timeout=0.0
        )
        assert result.timed_out is True
        assert result.success is False
        assert result.error_kind is ErrorKind.TIMEOUT
        assert executor.active_watchdogs == 0

    @pytest.mark.asyncio
    async def test_no_watchdog_left_for_any_outcome(self, executor, python_exe, tmp_path):
        """Success, failure, spawn error and timeout all leave no armed timer."""
        await executor.execute(python_exe, ["-c", "pass"])
        await executor.execute(python_exe, ["-c", "raise SystemExit(1)"])
        await executor.execute(str(tmp_path / "missing"), [])
        await executor.execute(python_exe, ["-c", "import time; time.sleep(5)"], timeout=0.2)
        assert executor.active_watchdogs == 0

    @pytest.mark.asyncio
    async def test_missing_executable_is_spawn_error(self, executor, tmp_path):
        """Spawn failures resolve with the OS error instead of raising."""
        result = await executor.execute(str(tmp_path / "no-such-openssl"), ["version"])
        assert result.success is False
        assert result.exit_code is None
        assert result.error_kind is ErrorKind.SPAWN
        assert result.error

    @pytest.mark.asyncio
    async def test_unset_program_is_configuration_error(self, executor):
        result = await executor.run(CommandInvocation(program=""))
        assert result.success is False
        assert result.error_kind is ErrorKind.CONFIGURATION

    @pytest.mark.asyncio
    async def test_stdin_payload_written_once(self, executor, python_exe):
        result = await executor.execute(
            python_exe,
            ["-c", "import sys; print(sys.stdin.read().upper())"],
            stdin="hello",
        )
        assert result.success is True
        assert result.stdout.strip() == "HELLO"

    @pytest.mark.asyncio
    async def test_without_payload_stdin_is_closed(self, executor, python_exe):
        """A child waiting on stdin sees EOF rather than hanging."""
        result = await executor.execute(python_exe, ["-c", "input()"], timeout=5.0)
        assert result.timed_out is False
        assert result.success is False
        assert "EOFError" in result.stderr

    @pytest.mark.asyncio
    async def test_env_overlay_and_cwd(self, executor, python_exe, tmp_path):
        result = await executor.execute(
            python_exe,
            ["-c", "import os; print(os.environ['CERTMGR_CHILD']); print(os.getcwd())"],
            env={"CERTMGR_CHILD": "visible"},
            cwd=str(tmp_path),
        )
        lines = result.stdout.splitlines()
        assert lines[0] == "visible"
        assert lines[1] == str(tmp_path.resolve())

    @pytest.mark.asyncio
    async def test_invalid_utf8_replaced(self, executor, python_exe):
        result = await executor.execute(
            python_exe, ["-c", "import sys; sys.stdout.buffer.write(b'ok\\xff')"]
        )
        assert result.stdout == "ok\ufffd"


class TestClassifyFailure:
    """Test failure classification."""

    def test_success_has_no_kind(self):
        assert classify_failure(CommandResult(exit_code=0, success=True)) is None

    def test_runner_kind_kept(self):
        result = CommandResult(exit_code=None, error_kind=ErrorKind.SPAWN)
        assert classify_failure(result) is ErrorKind.SPAWN

    def test_legacy_hint(self):
        result = CommandResult(
            exit_code=1, stderr="error:0308010C:digital envelope routines::unsupported"
        )
        assert classify_failure(result) is ErrorKind.COMPATIBILITY

    def test_generic(self):
        assert classify_failure(CommandResult(exit_code=1, stderr="nope")) is ErrorKind.EXECUTION
