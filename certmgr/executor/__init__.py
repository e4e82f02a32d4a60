"""Subprocess orchestration for external toolkits.

Provides one-shot execution, interactive prompt driving and compatibility
fallback on top of a shared result model.
"""

from __future__ import annotations

from certmgr.executor.base import (
    CommandInvocation,
    CommandResult,
    ErrorCode,
    ErrorKind,
    OperationError,
    OperationResult,
    ProcessRunner,
    classify_failure,
)
from certmgr.executor.command_executor import CommandExecutor, format_command
from certmgr.executor.fallback import FallbackExecutionStrategy, LegacyModuleLocator
from certmgr.executor.interactive import (
    InteractiveSessionDriver,
    PromptCategory,
    PromptPattern,
    SecretBundle,
    select_response,
)

__all__ = [
    "CommandExecutor",
    "CommandInvocation",
    "CommandResult",
    "ErrorCode",
    "ErrorKind",
    "FallbackExecutionStrategy",
    "InteractiveSessionDriver",
    "LegacyModuleLocator",
    "OperationError",
    "OperationResult",
    "ProcessRunner",
    "PromptCategory",
    "PromptPattern",
    "SecretBundle",
    "classify_failure",
    "format_command",
    "select_response",
]
