"""Tests for the compatibility fallback ladder."""

from __future__ import annotations

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.executor]

from certmgr.executor.base import CommandInvocation, CommandResult, ErrorKind, ProcessRunner
from certmgr.executor.fallback import (
    VARIANT_DIRECT,
    VARIANT_INLINE_SECRETS,
    VARIANT_LEGACY,
    FallbackExecutionStrategy,
    LegacyModuleLocator,
    has_success_marker,
    inline_secret_args,
    insert_legacy_flag,
)

PEM_CERT = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"


class ScriptedRunner(ProcessRunner):
    """Returns queued results and records every invocation."""

    def __init__(self, *results: CommandResult):
        self.results = list(results)
        self.calls: list[CommandInvocation] = []

    async def run(self, invocation: CommandInvocation) -> CommandResult:
        self.calls.append(invocation)
        return self.results.pop(0)


def failed(stderr: str = "error:0308010C:digital envelope routines::unsupported") -> CommandResult:
    return CommandResult(
        exit_code=1,
        stderr=stderr,
        success=False,
        error=stderr,
        error_kind=ErrorKind.COMPATIBILITY,
    )


def succeeded(stdout: str = PEM_CERT) -> CommandResult:
    return CommandResult(exit_code=0, stdout=stdout, success=True)


@pytest.fixture
def invocation():
    return CommandInvocation(
        program="/opt/openssl/bin/openssl",
        args=["pkcs12", "-in", "legacy.p12", "-nokeys", "-passin", "env:P12_PASS"],
        env={"P12_PASS": "s3cret"},
    )


@pytest.fixture
def locator():
    return LegacyModuleLocator()


class TestLadder:
    """Test FallbackExecutionStrategy.execute_with_fallback."""

    @pytest.mark.asyncio
    async def test_direct_success_single_call(self, invocation, locator):
        runner = ScriptedRunner(succeeded())
        result = await FallbackExecutionStrategy(runner, locator).execute_with_fallback(invocation)
        assert result.success is True
        assert result.metadata["variant"] == VARIANT_DIRECT
        assert result.metadata["attempts"] == 1
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_legacy_rung_success_uses_two_calls(self, invocation, locator):
        """A non-auth failure then a legacy success never reaches a third rung."""
        runner = ScriptedRunner(failed(), succeeded(), succeeded())
        strategy = FallbackExecutionStrategy(runner, locator, allow_inline_secrets=True)

        result = await strategy.execute_with_fallback(invocation)

        assert result.success is True
        assert result.metadata["variant"] == VARIANT_LEGACY
        assert result.metadata["attempts"] == 2
        assert len(runner.calls) == 2
        assert runner.calls[1].args[:2] == ["pkcs12", "-legacy"]
        assert runner.calls[1].args.count("-legacy") == 1

    @pytest.mark.asyncio
    async def test_caller_invocation_not_mutated(self, invocation, locator):
        runner = ScriptedRunner(failed(), failed(), failed())
        await FallbackExecutionStrategy(runner, locator, True).execute_with_fallback(invocation)
        assert "-legacy" not in invocation.args
        assert invocation.env == {"P12_PASS": "s3cret"}

    @pytest.mark.asyncio
    async def test_authentication_failure_stops_ladder(self, invocation, locator):
        runner = ScriptedRunner(
            CommandResult(exit_code=1, stderr="Mac verify error: invalid password?"),
            succeeded(),
        )
        result = await FallbackExecutionStrategy(runner, locator).execute_with_fallback(invocation)
        assert result.success is False
        assert result.error_kind is ErrorKind.AUTHENTICATION
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_stops_ladder(self, invocation, locator):
        runner = ScriptedRunner(
            CommandResult(exit_code=None, timed_out=True, error_kind=ErrorKind.TIMEOUT),
            succeeded(),
        )
        result = await FallbackExecutionStrategy(runner, locator).execute_with_fallback(invocation)
        assert result.timed_out is True
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_marker_success_despite_exit_code(self, invocation, locator):
        """A PEM block in stdout counts as success even with a non-zero exit."""
        runner = ScriptedRunner(
            CommandResult(exit_code=1, stdout=PEM_CERT, stderr="warning: deprecated"),
        )
        result = await FallbackExecutionStrategy(runner, locator).execute_with_fallback(invocation)
        assert result.success is True
        assert result.error is None
        assert result.metadata["marker_success"] is True
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_inline_secret_rung(self, invocation, locator):
        runner = ScriptedRunner(failed(), failed(), succeeded())
        strategy = FallbackExecutionStrategy(runner, locator, allow_inline_secrets=True)

        result = await strategy.execute_with_fallback(invocation)

        assert result.success is True
        assert result.metadata["variant"] == VARIANT_INLINE_SECRETS
        last = runner.calls[2]
        assert "pass:s3cret" in last.args
        assert "env:P12_PASS" not in last.args
        assert "-legacy" in last.args
        assert "P12_PASS" not in last.env

    @pytest.mark.asyncio
    async def test_inline_rung_disabled(self, invocation, locator):
        runner = ScriptedRunner(failed(), failed(), succeeded())
        strategy = FallbackExecutionStrategy(runner, locator, allow_inline_secrets=False)
        result = await strategy.execute_with_fallback(invocation)
        assert result.success is False
        assert len(runner.calls) == 2

    @pytest.mark.asyncio
    async def test_inline_rung_skipped_without_references(self, locator):
        plain = CommandInvocation(program="openssl", args=["pkcs12", "-in", "a.p12"])
        runner = ScriptedRunner(failed(), failed())
        strategy = FallbackExecutionStrategy(runner, locator, allow_inline_secrets=True)
        await strategy.execute_with_fallback(plain)
        assert len(runner.calls) == 2

    @pytest.mark.asyncio
    async def test_every_rung_fails_returns_first_as_compatibility(self, invocation, locator):
        first = failed("first failure")
        first.error_kind = ErrorKind.EXECUTION
        runner = ScriptedRunner(first, failed("second"), failed("third"))
        strategy = FallbackExecutionStrategy(runner, locator, allow_inline_secrets=True)

        result = await strategy.execute_with_fallback(invocation)

        assert result is first
        assert result.success is False
        assert result.error_kind is ErrorKind.COMPATIBILITY
        assert result.metadata["attempts"] == 3
        assert result.metadata["variant"] == VARIANT_DIRECT

    @pytest.mark.asyncio
    async def test_legacy_rung_sets_modules_dir(self, tmp_path, locator):
        bin_dir = tmp_path / "bin"
        modules = tmp_path / "lib" / "ossl-modules"
        bin_dir.mkdir()
        modules.mkdir(parents=True)
        (modules / "legacy.so").write_bytes(b"")
        plain = CommandInvocation(program=str(bin_dir / "openssl"), args=["pkcs12", "-in", "a.p12"])

        runner = ScriptedRunner(failed(), succeeded())
        await FallbackExecutionStrategy(runner, locator).execute_with_fallback(plain)

        assert runner.calls[1].env["OPENSSL_MODULES"] == str(modules.resolve())
        assert "OPENSSL_MODULES" not in runner.calls[0].env


class TestLadderHelpers:
    """Test argument rewriting helpers."""

    def test_insert_legacy_flag_after_subcommand(self):
        assert insert_legacy_flag(["pkcs12", "-in", "a"]) == ["pkcs12", "-legacy", "-in", "a"]

    def test_insert_legacy_flag_without_pkcs12(self):
        assert insert_legacy_flag(["x509", "-in", "a"]) == ["x509", "-legacy", "-in", "a"]

    def test_insert_legacy_flag_idempotent(self):
        args = ["pkcs12", "-legacy", "-in", "a"]
        assert insert_legacy_flag(args) == args

    def test_inline_secret_args(self):
        args, names = inline_secret_args(["-passin", "env:A", "-passout", "env:B"], {"A": "1"})
        assert args == ["-passin", "pass:1", "-passout", "pass:"]
        assert names == {"A", "B"}

    def test_marker_ignored_when_auth_failed(self):
        result = CommandResult(exit_code=1, stdout=PEM_CERT, stderr="bad decrypt")
        assert has_success_marker(result) is False


class TestLegacyModuleLocator:
    """Test legacy provider discovery and memoization."""

    def test_locate_and_memoize(self, tmp_path, locator):
        bin_dir = tmp_path / "bin"
        modules = tmp_path / "lib64" / "ossl-modules"
        bin_dir.mkdir()
        modules.mkdir(parents=True)
        module = modules / "legacy.so"
        module.write_bytes(b"")
        program = str(bin_dir / "openssl")

        assert locator.locate(program) == modules.resolve()
        module.unlink()
        assert locator.locate(program) == modules.resolve()

        locator.reset(program)
        assert locator.locate(program) is None

    def test_negative_result_memoized(self, tmp_path, locator):
        program = str(tmp_path / "bin" / "openssl")
        assert locator.locate(program) is None
        modules = tmp_path / "bin"
        modules.mkdir()
        (modules / "legacy.so").write_bytes(b"")
        assert locator.locate(program) is None
        locator.reset()
        assert locator.locate(program) == modules.resolve()
