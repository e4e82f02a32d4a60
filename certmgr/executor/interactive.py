"""Interactive session driver for prompting toolkits.

keytool asks for passwords and confirmations on its output streams and reads
the answers from stdin. The driver watches both streams, recognizes prompts
by their trailing text and writes each answer once.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from certmgr.config.config import get_execution_config
from certmgr.executor.base import (
    CommandInvocation,
    CommandResult,
    ProcessRunner,
)
from certmgr.executor.catalogue import KEYTOOL_PROMPTS, PromptCategory, PromptPattern
from certmgr.executor.command_executor import (
    CommandExecutor,
    WatchdogMixin,
    build_env,
    finish_result,
    format_command,
    pump_stream,
    spawn_failure,
    unconfigured_program,
)
from certmgr.utils.sanitize import mask_password

logger = logging.getLogger(__name__)

__all__ = [
    "InteractiveSessionDriver",
    "PromptCategory",
    "PromptMatcher",
    "PromptPattern",
    "SecretBundle",
    "select_response",
]


@dataclass(repr=False)
class SecretBundle:
    """Passwords and decisions supplied once per interactive session."""

    store_pass: str | None = None
    key_pass: str | None = None
    src_store_pass: str | None = None
    dest_store_pass: str | None = None
    new_pass: str | None = None
    trust_decision: bool | None = None

    def __repr__(self) -> str:
        return (
            f"SecretBundle(store_pass={mask_password(self.store_pass)!r}, "
            f"key_pass={mask_password(self.key_pass)!r}, "
            f"src_store_pass={mask_password(self.src_store_pass)!r}, "
            f"dest_store_pass={mask_password(self.dest_store_pass)!r}, "
            f"new_pass={mask_password(self.new_pass)!r}, "
            f"trust_decision={self.trust_decision!r})"
        )


def select_response(category: PromptCategory, secrets: SecretBundle) -> str:
    """Choose the answer for a prompt; missing secrets answer as empty."""
    if category is PromptCategory.TRUST_CONFIRMATION:
        return "yes" if secrets.trust_decision else "no"
    if category is PromptCategory.SOURCE_STORE_PASSWORD:
        value = secrets.src_store_pass or secrets.store_pass
    elif category is PromptCategory.DESTINATION_STORE_PASSWORD:
        value = secrets.dest_store_pass or secrets.store_pass
    elif category is PromptCategory.KEY_PASSWORD:
        value = secrets.key_pass or secrets.store_pass
    elif category in {PromptCategory.NEW_PASSWORD, PromptCategory.STORE_PASSWORD_REENTRY}:
        value = secrets.new_pass or secrets.store_pass
    else:
        value = secrets.store_pass
    return value or ""


class PromptMatcher:
    """Rolling output buffer and answered-prompt memory for one session."""

    def __init__(self, patterns: Sequence[PromptPattern], buffer_size: int = 1024):
        """Initialize prompt matcher.

        Args:
            patterns: Prompt patterns, most specific first
            buffer_size: Trailing characters kept for matching

        """
        self.patterns = tuple(patterns)
        self.buffer_size = buffer_size
        self.buffer = ""
        self.answered: list[str] = []

    def feed(self, text: str) -> PromptPattern | None:
        """Append output and return the prompt to answer, if any.

        A returned pattern is recorded as answered and the buffer is cleared,
        so the same prompt text arriving again yields None.
        """
        self.buffer = (self.buffer + text)[-self.buffer_size :]
        for pattern in self.patterns:
            if pattern.name in self.answered:
                continue
            if pattern.matches(self.buffer):
                self.answered.append(pattern.name)
                self.buffer = ""
                return pattern
        return None


class InteractiveSessionDriver(WatchdogMixin, ProcessRunner):
    """Drives a toolkit process through its prompts."""

    def __init__(
        self,
        program: str | None,
        patterns: Sequence[PromptPattern] = KEYTOOL_PROMPTS,
        default_timeout: float | None = None,
        buffer_size: int | None = None,
    ):
        """Initialize interactive session driver.

        Args:
            program: Toolkit executable, None when not configured
            patterns: Prompt catalogue, most specific first
            default_timeout: Seconds before a session is killed
            buffer_size: Trailing characters kept for prompt matching

        """
        execution = get_execution_config()
        self.program = program
        self.patterns = tuple(patterns)
        self.default_timeout = (
            default_timeout if default_timeout is not None else execution.default_timeout
        )
        self.buffer_size = buffer_size or execution.prompt_buffer_size
        self.executor = CommandExecutor(self.default_timeout)
        self._active_watchdogs = 0

    @property
    def active_watchdogs(self) -> int:
        return self._active_watchdogs + self.executor.active_watchdogs

    async def run(self, invocation: CommandInvocation) -> CommandResult:
        """Run without prompt handling; stdin is closed immediately."""
        return await self.executor.run(invocation)

    async def run_direct(
        self,
        args: Sequence[str],
        cwd: str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a non-interactive toolkit command."""
        return await self.run(
            CommandInvocation(
                program=self.program or "",
                args=list(args),
                cwd=cwd,
                env=dict(env or {}),
                timeout=timeout,
            )
        )

    async def run_interactive(
        self,
        args: Sequence[str],
        secrets: SecretBundle,
        cwd: str | None = None,
        timeout: float | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a command, answering its prompts from ``secrets``.

        Args:
            args: Argument vector
            secrets: Values for password and trust prompts
            cwd: Working directory
            timeout: Seconds before the process is killed
            env: Variables overlaid on the inherited environment

        Returns:
            CommandResult whose metadata lists the answered prompt names

        """
        if not self.program:
            return unconfigured_program()

        timeout = timeout if timeout is not None else self.default_timeout
        command_line = format_command(self.program, args)
        logger.debug("Starting interactive session: %s", command_line)

        try:
            process = await asyncio.create_subprocess_exec(
                self.program,
                *args,
                cwd=cwd,
                env=build_env(env),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning("Failed to start %s: %s", command_line, e)
            return spawn_failure(e)

        matcher = PromptMatcher(self.patterns, self.buffer_size)

        async def on_chunk(text: str) -> None:
            pattern = matcher.feed(text)
            if pattern is None:
                return
            logger.debug("Answering prompt %s", pattern.name)
            await self._send_response(process, select_response(pattern.category, secrets))

        watchdog = self._arm_watchdog(process, timeout)
        stdout: list[str] = []
        stderr: list[str] = []
        try:
            await asyncio.gather(
                pump_stream(process.stdout, stdout, on_chunk),
                pump_stream(process.stderr, stderr, on_chunk),
            )
            await process.wait()
        finally:
            watchdog.disarm()
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        result = finish_result(process, watchdog, stdout, stderr)
        result.metadata["answered_prompts"] = list(matcher.answered)
        if result.timed_out:
            logger.warning("Interactive session timed out after %gs: %s", timeout, command_line)
        elif not result.success:
            logger.debug(
                "Interactive session failed (%s): %s",
                result.error_kind.value if result.error_kind else "unknown",
                command_line,
            )
        return result

    async def _send_response(self, process: asyncio.subprocess.Process, value: str) -> None:
        stdin = process.stdin
        if stdin is None or stdin.is_closing():
            logger.debug("Prompt seen after stdin closed; response dropped")
            return
        try:
            stdin.write(f"{value}\n".encode())
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug("Process exited before reading response: %s", e)
