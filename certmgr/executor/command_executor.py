"""One-shot external command execution.

Runs openssl/keytool through ``asyncio.create_subprocess_exec`` (never a
shell), captures stdout and stderr as they stream, and bounds every run with
a kill-once watchdog.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from certmgr.config.config import get_execution_config
from certmgr.executor.base import (
    CommandInvocation,
    CommandResult,
    ErrorKind,
    ProcessRunner,
    classify_failure,
)
from certmgr.utils.sanitize import sanitize_args, sanitize_log

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


def format_command(program: str, args: Sequence[str]) -> str:
    """Render a command line for logs with every secret redacted.

    Args:
        program: Executable path
        args: Argument vector

    Returns:
        Single-line command string safe to log

    """
    parts = [program, *sanitize_args(args)]
    return " ".join(f'"{part}"' if " " in part else part for part in parts)


def build_env(overlay: Mapping[str, str] | None) -> dict[str, str] | None:
    """Overlay variables on the inherited environment, None to inherit as-is."""
    if not overlay:
        return None
    env = dict(os.environ)
    env.update(overlay)
    return env


class Watchdog:
    """Kills a process exactly once if it outlives its timeout."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        timeout: float,
        on_disarm: Callable[[], None] | None = None,
    ):
        """Arm the watchdog.

        Args:
            process: Process to kill on expiry
            timeout: Seconds until expiry; zero or less expires on the next
                loop iteration
            on_disarm: Called once when the watchdog is disarmed

        """
        self._process = process
        self._on_disarm = on_disarm
        self._disarmed = False
        self.timeout = timeout
        self.fired = False
        self._handle = asyncio.get_running_loop().call_later(timeout, self._fire)

    def _fire(self) -> None:
        if self._disarmed or self.fired or self._process.returncode is not None:
            return
        self.fired = True
        try:
            self._process.kill()
        except ProcessLookupError:
            logger.debug("Process %s exited before it could be killed", self._process.pid)

    def disarm(self) -> None:
        """Cancel the pending timer; safe to call more than once."""
        if self._disarmed:
            return
        self._disarmed = True
        self._handle.cancel()
        if self._on_disarm is not None:
            self._on_disarm()


async def pump_stream(
    stream: asyncio.StreamReader | None,
    sink: list[str],
    on_chunk: Callable[[str], Any] | None = None,
) -> None:
    """Read a pipe to EOF, decoding incrementally into ``sink``.

    Args:
        stream: Pipe to read, ignored when None
        sink: List the decoded chunks are appended to
        on_chunk: Optional callback, sync or async, invoked per decoded chunk

    """
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        chunk = await stream.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        text = decoder.decode(chunk)
        if not text:
            continue
        sink.append(text)
        if on_chunk is not None:
            outcome = on_chunk(text)
            if asyncio.iscoroutine(outcome):
                await outcome
    tail = decoder.decode(b"", final=True)
    if tail:
        sink.append(tail)


class WatchdogMixin:
    """Tracks how many watchdogs a runner currently has armed."""

    _active_watchdogs = 0

    @property
    def active_watchdogs(self) -> int:
        """Number of armed timers; zero whenever no run is in flight."""
        return self._active_watchdogs

    def _arm_watchdog(self, process: asyncio.subprocess.Process, timeout: float) -> Watchdog:
        self._active_watchdogs += 1
        return Watchdog(process, timeout, on_disarm=self._watchdog_disarmed)

    def _watchdog_disarmed(self) -> None:
        self._active_watchdogs -= 1


def finish_result(
    process: asyncio.subprocess.Process,
    watchdog: Watchdog,
    stdout: list[str],
    stderr: list[str],
) -> CommandResult:
    """Build the result of a process that has exited."""
    out = "".join(stdout)
    err = "".join(stderr)
    if watchdog.fired:
        return CommandResult(
            exit_code=None,
            stdout=out,
            stderr=err,
            success=False,
            error=f"Command timed out after {watchdog.timeout:g} seconds",
            error_kind=ErrorKind.TIMEOUT,
            timed_out=True,
        )

    exit_code = process.returncode
    result = CommandResult(
        exit_code=exit_code,
        stdout=out,
        stderr=err,
        success=exit_code == 0,
    )
    if not result.success:
        result.error = sanitize_log(err.strip()) or f"Command exited with code {exit_code}"
        result.error_kind = classify_failure(result)
    return result


def spawn_failure(error: OSError) -> CommandResult:
    """Result for a process that could not be started."""
    return CommandResult(
        exit_code=None,
        success=False,
        error=str(error),
        error_kind=ErrorKind.SPAWN,
    )


def unconfigured_program() -> CommandResult:
    """Result for an invocation whose toolkit path is not set."""
    return CommandResult(
        exit_code=None,
        success=False,
        error="Toolkit path is not configured",
        error_kind=ErrorKind.CONFIGURATION,
    )


class CommandExecutor(WatchdogMixin, ProcessRunner):
    """Runs one external command to completion."""

    def __init__(self, default_timeout: float | None = None):
        """Initialize command executor.

        Args:
            default_timeout: Timeout in seconds when an invocation sets none,
                defaults to ``execution.default_timeout`` from the config

        """
        if default_timeout is None:
            default_timeout = get_execution_config().default_timeout
        self.default_timeout = default_timeout
        self._active_watchdogs = 0

    async def execute(
        self,
        program: str,
        args: Sequence[str],
        cwd: str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
        stdin: str | None = None,
    ) -> CommandResult:
        """Execute a command and capture its output.

        Args:
            program: Executable path
            args: Argument vector
            cwd: Working directory
            timeout: Seconds before the process is killed
            env: Variables overlaid on the inherited environment
            stdin: Payload written once before stdin is closed

        Returns:
            CommandResult; never raises for spawn failures or timeouts

        """
        invocation = CommandInvocation(
            program=program,
            args=list(args),
            cwd=cwd,
            env=dict(env or {}),
            timeout=timeout,
            stdin=stdin,
        )
        return await self.run(invocation)

    async def run(self, invocation: CommandInvocation) -> CommandResult:
        """Run an invocation to completion."""
        if not invocation.program:
            return unconfigured_program()

        timeout = invocation.timeout if invocation.timeout is not None else self.default_timeout
        command_line = format_command(invocation.program, invocation.args)
        logger.debug("Executing: %s", command_line)

        try:
            process = await asyncio.create_subprocess_exec(
                invocation.program,
                *invocation.args,
                cwd=invocation.cwd,
                env=build_env(invocation.env),
                stdin=(
                    asyncio.subprocess.PIPE
                    if invocation.stdin is not None
                    else asyncio.subprocess.DEVNULL
                ),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning("Failed to start %s: %s", command_line, e)
            return spawn_failure(e)

        watchdog = self._arm_watchdog(process, timeout)
        stdout: list[str] = []
        stderr: list[str] = []
        try:
            await asyncio.gather(
                self._feed_stdin(process, invocation.stdin),
                pump_stream(process.stdout, stdout),
                pump_stream(process.stderr, stderr),
            )
            await process.wait()
        finally:
            watchdog.disarm()
            if process.returncode is None:
                # Caller was cancelled mid-run
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        result = finish_result(process, watchdog, stdout, stderr)
        if result.timed_out:
            logger.warning("Command timed out after %gs: %s", timeout, command_line)
        elif not result.success:
            logger.debug(
                "Command failed with exit code %s: %s", result.exit_code, command_line
            )
        return result

    async def _feed_stdin(self, process: asyncio.subprocess.Process, payload: str | None) -> None:
        if payload is None or process.stdin is None:
            return
        try:
            process.stdin.write(payload.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug("Process closed stdin before payload was written: %s", e)
        finally:
            process.stdin.close()
