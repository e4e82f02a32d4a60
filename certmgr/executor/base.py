"""Base classes for command execution.

Provides the invocation and result data structures shared by every runner,
plus the abstract runner interface the fallback strategy builds on.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Generic, TypeVar

from certmgr.executor.catalogue import contains_auth_failure, contains_legacy_hint
from certmgr.utils.sanitize import sanitize_log

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Why an invocation failed."""

    CONFIGURATION = "configuration"
    SPAWN = "spawn"
    TIMEOUT = "timeout"
    AUTHENTICATION = "authentication"
    COMPATIBILITY = "compatibility"
    EXECUTION = "execution"


class ErrorCode(str, Enum):
    """Service-level error codes surfaced to callers."""

    OPENSSL_NOT_CONFIGURED = "OPENSSL_NOT_CONFIGURED"
    OPENSSL_EXECUTION_FAILED = "OPENSSL_EXECUTION_FAILED"
    JDK_NOT_CONFIGURED = "JDK_NOT_CONFIGURED"
    KEYTOOL_EXECUTION_FAILED = "KEYTOOL_EXECUTION_FAILED"
    INVALID_PASSWORD = "INVALID_PASSWORD"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    INVALID_FORMAT = "INVALID_FORMAT"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    TIMEOUT = "TIMEOUT"
    ALIAS_EXISTS = "ALIAS_EXISTS"
    ALIAS_NOT_FOUND = "ALIAS_NOT_FOUND"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass
class CommandInvocation:
    """Everything needed to run one external command.

    Args:
        program: Absolute path of the executable
        args: Argument vector, never passed through a shell
        cwd: Working directory
        env: Variables overlaid on the inherited environment
        timeout: Seconds before the process is killed, None for the default
        stdin: Payload written once, after which stdin is closed

    """

    program: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)
    timeout: float | None = None
    stdin: str | None = None

    def with_args(self, args: Sequence[str]) -> CommandInvocation:
        """Return a copy with a different argument vector."""
        return replace(self, args=list(args), env=dict(self.env))

    def with_env(self, env: Mapping[str, str]) -> CommandInvocation:
        """Return a copy with a replaced environment overlay."""
        return replace(self, args=list(self.args), env=dict(env))


@dataclass
class CommandResult:
    """Raw outcome of one external command.

    Args:
        exit_code: Process exit code, None if it never ran or was killed
        stdout: Accumulated standard output
        stderr: Accumulated standard error
        success: Exit code 0 and no forced termination
        error: Human-readable failure description
        error_kind: Failure classification
        timed_out: Process was killed by the watchdog
        metadata: Runner-specific details (fallback variant, attempts)

    """

    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    success: bool = False
    error: str | None = None
    error_kind: ErrorKind | None = None
    timed_out: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def output(self) -> str:
        """Stdout and stderr joined, for phrase matching."""
        return f"{self.stdout}\n{self.stderr}"


@dataclass
class OperationError:
    """Service-level error.

    Args:
        code: Error code
        message: Human-readable message
        technical_details: Sanitized toolkit output

    """

    code: ErrorCode
    message: str
    technical_details: str | None = None


@dataclass
class OperationResult(Generic[T]):
    """Service-level result value wrapping data or an error."""

    success: bool
    data: T | None = None
    error: OperationError | None = None

    @classmethod
    def ok(cls, data: T | None = None) -> OperationResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        code: ErrorCode,
        message: str,
        technical_details: str | None = None,
    ) -> OperationResult[T]:
        return cls(
            success=False,
            error=OperationError(code, message, technical_details),
        )

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error else None


def classify_failure(result: CommandResult) -> ErrorKind | None:
    """Classify a finished command.

    Returns None for successful results. Kinds already set by the runner
    (configuration, spawn, timeout) are kept.
    """
    if result.success:
        return None
    if result.error_kind is not None:
        return result.error_kind
    if result.timed_out:
        return ErrorKind.TIMEOUT
    if contains_auth_failure(result.output):
        return ErrorKind.AUTHENTICATION
    if contains_legacy_hint(result.output):
        return ErrorKind.COMPATIBILITY
    return ErrorKind.EXECUTION


class ProcessRunner(ABC):
    """Abstract base class for anything that runs a CommandInvocation."""

    @abstractmethod
    async def run(self, invocation: CommandInvocation) -> CommandResult:
        """Run an invocation to completion.

        Expected failures (missing executable, timeout, non-zero exit) are
        reported in the returned result, never raised.

        Args:
            invocation: What to run

        Returns:
            CommandResult with captured output

        """


def failure_from_result(
    result: CommandResult,
    message: str,
    execution_code: ErrorCode,
    not_configured_code: ErrorCode,
) -> OperationResult[Any]:
    """Translate a failed command into a service-level error.

    Args:
        result: Failed command result
        message: What the operation was trying to do
        execution_code: Code for generic toolkit failures
        not_configured_code: Code when the toolkit path is unset

    Returns:
        Failed OperationResult with sanitized technical details

    """
    details = sanitize_log(result.stderr.strip() or result.error or "") or None
    kind = result.error_kind or classify_failure(result)
    if kind is ErrorKind.CONFIGURATION:
        return OperationResult.fail(not_configured_code, message, details)
    if kind is ErrorKind.TIMEOUT:
        return OperationResult.fail(ErrorCode.TIMEOUT, f"{message}: timed out", details)
    if kind is ErrorKind.AUTHENTICATION:
        return OperationResult.fail(
            ErrorCode.INVALID_PASSWORD, f"{message}: incorrect password", details
        )
    if kind is ErrorKind.SPAWN and "permission denied" in (result.error or "").lower():
        return OperationResult.fail(ErrorCode.PERMISSION_DENIED, message, details)
    return OperationResult.fail(execution_code, message, details)
