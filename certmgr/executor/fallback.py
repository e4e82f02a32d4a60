"""Compatibility fallback for legacy container formats.

Newer openssl releases refuse PKCS#12 files protected with deprecated
algorithms unless the legacy provider is loaded. Which combination works
depends on how the toolkit was built and packaged, so invocations are
retried along a ladder of increasingly permissive variants:

1. the invocation as given;
2. the legacy flag after the subcommand, with ``OPENSSL_MODULES`` pointing
   at the legacy provider when it can be located;
3. as 2, with ``env:NAME`` secret references replaced by inline
   ``pass:<value>`` arguments, for builds that ignore the environment.

A rejected secret stops the ladder at once.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from certmgr.config.config import get_execution_config
from certmgr.executor.base import (
    CommandInvocation,
    CommandResult,
    ErrorKind,
    ProcessRunner,
)
from certmgr.executor.catalogue import (
    LEGACY_FLAG,
    LEGACY_MODULE_FILES,
    MODULES_ENV_VAR,
    PEM_MARKER,
    contains_auth_failure,
)

logger = logging.getLogger(__name__)

VARIANT_DIRECT = "direct"
VARIANT_LEGACY = "legacy"
VARIANT_INLINE_SECRETS = "inline-secrets"

# Kinds for which another variant cannot help
_TERMINAL_KINDS = {
    ErrorKind.CONFIGURATION,
    ErrorKind.SPAWN,
    ErrorKind.TIMEOUT,
    ErrorKind.AUTHENTICATION,
}


class LegacyModuleLocator:
    """Finds the directory holding the openssl legacy provider module.

    Lookups are memoized per toolkit path, including negative results.
    """

    def __init__(self) -> None:
        """Initialize legacy module locator."""
        self._cache: dict[str, Path | None] = {}

    @staticmethod
    def candidate_dirs(program: str) -> list[Path]:
        """Directories searched, in order, relative to the executable."""
        bin_dir = Path(program).parent
        return [
            bin_dir,
            bin_dir.parent / "lib" / "ossl-modules",
            bin_dir.parent / "lib64" / "ossl-modules",
            bin_dir / "ossl-modules",
            bin_dir.parent / "ossl-modules",
        ]

    def locate(self, program: str) -> Path | None:
        """Return the legacy module directory for ``program``, if any."""
        if program in self._cache:
            return self._cache[program]

        module_names = (
            ("legacy.dll",) if sys.platform == "win32" else LEGACY_MODULE_FILES
        )
        found: Path | None = None
        for directory in self.candidate_dirs(program):
            if any((directory / name).is_file() for name in module_names):
                found = directory.resolve()
                break

        if found is None:
            logger.debug("No legacy provider module found near %s", program)
        else:
            logger.debug("Legacy provider modules for %s at %s", program, found)
        self._cache[program] = found
        return found

    def reset(self, program: str | None = None) -> None:
        """Forget cached lookups, e.g. after the toolkit path changes."""
        if program is None:
            self._cache.clear()
        else:
            self._cache.pop(program, None)


def has_success_marker(result: CommandResult) -> bool:
    """Return True when output proves success despite a non-zero exit."""
    return PEM_MARKER in result.stdout and not contains_auth_failure(result.stderr)


def insert_legacy_flag(args: list[str]) -> list[str]:
    """Insert the legacy flag right after the subcommand."""
    if LEGACY_FLAG in args:
        return list(args)
    index = args.index("pkcs12") + 1 if "pkcs12" in args else min(1, len(args))
    return [*args[:index], LEGACY_FLAG, *args[index:]]


def inline_secret_args(args: list[str], env: dict[str, str]) -> tuple[list[str], set[str]]:
    """Replace ``env:NAME`` references with ``pass:<value>``.

    Returns:
        The rewritten arguments and the variable names that were inlined

    """
    rewritten: list[str] = []
    inlined: set[str] = set()
    for arg in args:
        if arg.startswith("env:"):
            name = arg[4:]
            rewritten.append(f"pass:{env.get(name, '')}")
            inlined.add(name)
        else:
            rewritten.append(arg)
    return rewritten, inlined


@dataclass
class _Rung:
    variant: str
    invocation: CommandInvocation


class FallbackExecutionStrategy:
    """Runs an invocation along the compatibility ladder."""

    def __init__(
        self,
        runner: ProcessRunner,
        locator: LegacyModuleLocator | None = None,
        allow_inline_secrets: bool | None = None,
    ):
        """Initialize fallback strategy.

        Args:
            runner: Executes each variant
            locator: Legacy provider lookup, shared across strategies by default
            allow_inline_secrets: Enable the last rung, defaults to
                ``execution.allow_inline_secret_fallback``

        """
        self.runner = runner
        self.locator = locator or default_locator
        if allow_inline_secrets is None:
            allow_inline_secrets = get_execution_config().allow_inline_secret_fallback
        self.allow_inline_secrets = allow_inline_secrets

    def legacy_env(self, program: str, base: dict[str, str]) -> dict[str, str]:
        """Environment overlay with the legacy provider directory set."""
        env = dict(base)
        modules_dir = self.locator.locate(program)
        if modules_dir is not None:
            env[MODULES_ENV_VAR] = str(modules_dir)
        return env

    def _later_rungs(self, invocation: CommandInvocation) -> list[_Rung]:
        legacy_args = insert_legacy_flag(invocation.args)
        rungs = [
            _Rung(
                VARIANT_LEGACY,
                invocation.with_args(legacy_args).with_env(
                    self.legacy_env(invocation.program, invocation.env)
                ),
            )
        ]

        inline_args, inlined = inline_secret_args(legacy_args, invocation.env)
        if inlined and self.allow_inline_secrets:
            remaining = {k: v for k, v in invocation.env.items() if k not in inlined}
            rungs.append(
                _Rung(
                    VARIANT_INLINE_SECRETS,
                    invocation.with_args(inline_args).with_env(
                        self.legacy_env(invocation.program, remaining)
                    ),
                )
            )
        return rungs

    async def execute_with_fallback(self, invocation: CommandInvocation) -> CommandResult:
        """Run ``invocation``, retrying with compatibility variants.

        Args:
            invocation: The direct invocation

        Returns:
            The first successful result, the authentication failure that
            stopped the ladder, or the direct attempt's result marked as a
            compatibility failure. ``metadata`` carries ``attempts`` and
            ``variant``.

        """
        first = await self.runner.run(invocation)
        attempts = 1
        outcome = self._judge(first, VARIANT_DIRECT, attempts)
        if outcome is not None:
            return outcome

        for rung in self._later_rungs(invocation):
            if rung.variant == VARIANT_INLINE_SECRETS:
                logger.warning(
                    "Retrying %s with secrets passed as arguments; they may be "
                    "visible to other local users while it runs",
                    invocation.program,
                )
            else:
                logger.debug("Retrying %s with %s variant", invocation.program, rung.variant)

            result = await self.runner.run(rung.invocation)
            attempts += 1
            outcome = self._judge(result, rung.variant, attempts)
            if outcome is not None:
                return outcome

        logger.info(
            "All %d compatibility variants failed for %s", attempts, invocation.program
        )
        first.error_kind = ErrorKind.COMPATIBILITY
        first.metadata.update({"attempts": attempts, "variant": VARIANT_DIRECT})
        return first

    def _judge(self, result: CommandResult, variant: str, attempts: int) -> CommandResult | None:
        """Return a final result, or None to continue down the ladder."""
        result.metadata.update({"attempts": attempts, "variant": variant})
        if result.success:
            return result
        if has_success_marker(result):
            result.success = True
            result.error = None
            result.error_kind = None
            result.metadata["marker_success"] = True
            return result
        if contains_auth_failure(result.output):
            result.error_kind = ErrorKind.AUTHENTICATION
            return result
        if result.error_kind in _TERMINAL_KINDS:
            return result
        return None


default_locator = LegacyModuleLocator()
