"""Command line interface for certmgr.

Provides toolkit checks and the batch jobs with Rich progress bars and
result tables.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.table import Table

from certmgr.batch.jobs import BatchService, export_report_csv, new_job_id
from certmgr.cli.progress import ProgressManager
from certmgr.config.config import init_config
from certmgr.executor.catalogue import (
    CATALOGUE_VERSION,
    OBSERVED_KEYTOOL_VERSIONS,
    OBSERVED_OPENSSL_VERSIONS,
)
from certmgr.models import BatchItemStatus, BatchResult, CertificateFormat, ExpirationStatus
from certmgr.toolkits.keytool import KeytoolToolkit
from certmgr.toolkits.openssl import OpenSSLToolkit
from certmgr.utils.exceptions import CertMgrError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATUS_STYLES = {
    BatchItemStatus.SUCCESS: "green",
    BatchItemStatus.ERROR: "red",
    BatchItemStatus.PENDING: "dim",
    BatchItemStatus.PROCESSING: "yellow",
}

_EXPIRATION_STYLES = {
    ExpirationStatus.VALID: "green",
    ExpirationStatus.EXPIRING_SOON: "yellow",
    ExpirationStatus.EXPIRED: "red",
}


def _run_job(
    service: BatchService,
    job_id: str,
    job: Callable[[], Awaitable[T]],
) -> T:
    """Run a batch coroutine, turning Ctrl+C into a cooperative cancel."""

    def _interrupt() -> None:
        logger.warning("Interrupt received, cancelling job %s after the current item", job_id)
        service.cancel(job_id)

    async def _main() -> T:
        loop = asyncio.get_running_loop()
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(signal.SIGINT, _interrupt)
        try:
            return await job()
        finally:
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(signal.SIGINT)

    try:
        return asyncio.run(_main())
    except CertMgrError as e:
        raise click.ClickException(str(e)) from e


def _print_batch_result(console: Console, result: BatchResult, title: str) -> None:
    table = Table(title=title)
    table.add_column("File", style="cyan")
    table.add_column("Status")
    table.add_column("Output / Error")

    for item in result.items:
        style = _STATUS_STYLES[item.status]
        detail = item.output_path if item.status is BatchItemStatus.SUCCESS else item.error_message
        table.add_row(item.input_path.name, f"[{style}]{item.status.value}[/{style}]", detail or "")

    console.print(table)
    summary = (
        f"{result.success_count} succeeded, {result.failed_count} failed "
        f"of {result.total_items} in {result.duration:.2f}s"
    )
    if result.cancelled:
        summary += f" (cancelled, {result.pending_count} not started)"
    console.print(summary)


def _exit_for(ctx: click.Context, result: BatchResult) -> None:
    if not result.success or result.cancelled:
        ctx.exit(1)


def _service(ctx: click.Context) -> BatchService:
    return ctx.obj.get("service") or BatchService()


extensions_option = click.option(
    "--ext",
    "-e",
    "extensions",
    multiple=True,
    help="File extension to include (repeatable); defaults to batch.default_extensions",
)
recursive_option = click.option(
    "--recursive", "-r", is_flag=True, help="Descend into subdirectories"
)


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    help="Configuration file path",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (-v: info, -vv: debug)",
)
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: int) -> None:
    """certmgr - certificate and keystore batch tooling."""
    ctx.ensure_object(dict)
    try:
        ctx.obj["config_manager"] = init_config(config)
    except CertMgrError as e:
        raise click.ClickException(str(e)) from e

    if verbose:
        level = logging.DEBUG if verbose > 1 else logging.INFO
        certmgr_logger = logging.getLogger("certmgr")
        certmgr_logger.setLevel(level)
        for handler in certmgr_logger.handlers:
            handler.setLevel(level)


@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Check that openssl and keytool are configured and runnable."""
    console = Console()

    async def _check() -> list[tuple[str, Any]]:
        return [
            ("OpenSSL", await OpenSSLToolkit().check_available()),
            ("keytool", await KeytoolToolkit().check_available()),
        ]

    table = Table(
        title="Toolkits",
        caption=(
            f"Prompt catalogue {CATALOGUE_VERSION}; checked against openssl "
            f"{', '.join(OBSERVED_OPENSSL_VERSIONS)} and keytool "
            f"{', '.join(OBSERVED_KEYTOOL_VERSIONS)}"
        ),
    )
    table.add_column("Toolkit", style="cyan")
    table.add_column("Status")
    table.add_column("Details")

    all_ok = True
    for name, outcome in asyncio.run(_check()):
        if outcome.success:
            table.add_row(name, "[green]available[/green]", outcome.data or "")
        else:
            all_ok = False
            table.add_row(
                name,
                f"[red]{outcome.error.code.value}[/red]",
                outcome.error.message,
            )
    console.print(table)
    if not all_ok:
        ctx.exit(1)


@cli.group()
def batch() -> None:
    """Batch operations over directories of certificates."""


@batch.command("convert")
@click.argument("input_dir", type=click.Path(file_okay=False))
@click.argument("output_dir", type=click.Path(file_okay=False))
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["pem", "der"], case_sensitive=False),
    default="pem",
    show_default=True,
    help="Output encoding",
)
@extensions_option
@recursive_option
@click.pass_context
def batch_convert(
    ctx: click.Context,
    input_dir: str,
    output_dir: str,
    output_format: str,
    extensions: tuple[str, ...],
    recursive: bool,
) -> None:
    """Convert certificates between PEM and DER."""
    console = Console()
    service = _service(ctx)
    job_id = new_job_id("convert")
    target = CertificateFormat(output_format.upper())

    with ProgressManager(console).track_batch("Converting") as on_progress:
        result = _run_job(
            service,
            job_id,
            lambda: service.batch_convert(
                input_dir,
                output_dir,
                target,
                extensions=extensions or None,
                recursive=recursive,
                on_progress=on_progress,
                job_id=job_id,
            ),
        )

    _print_batch_result(console, result, f"Convert to {target.value}")
    _exit_for(ctx, result)


@batch.command("extract-public")
@click.argument("input_dir", type=click.Path(file_okay=False))
@click.argument("output_dir", type=click.Path(file_okay=False))
@extensions_option
@recursive_option
@click.pass_context
def batch_extract_public(
    ctx: click.Context,
    input_dir: str,
    output_dir: str,
    extensions: tuple[str, ...],
    recursive: bool,
) -> None:
    """Extract public keys from certificates."""
    console = Console()
    service = _service(ctx)
    job_id = new_job_id("extract")

    with ProgressManager(console).track_batch("Extracting") as on_progress:
        result = _run_job(
            service,
            job_id,
            lambda: service.batch_extract_public_keys(
                input_dir,
                output_dir,
                extensions=extensions or None,
                recursive=recursive,
                on_progress=on_progress,
                job_id=job_id,
            ),
        )

    _print_batch_result(console, result, "Public key extraction")
    _exit_for(ctx, result)


@batch.command("import-truststore")
@click.argument("keystore", type=click.Path(dir_okay=False))
@click.argument("input_dir", type=click.Path(file_okay=False))
@click.option(
    "--password",
    prompt=True,
    hide_input=True,
    envvar="CERTMGR_KEYSTORE_PASSWORD",
    help="Keystore password",
)
@click.option("--alias-prefix", default="", help="Prefix prepended to each alias")
@extensions_option
@recursive_option
@click.pass_context
def batch_import_truststore(
    ctx: click.Context,
    keystore: str,
    input_dir: str,
    password: str,
    alias_prefix: str,
    extensions: tuple[str, ...],
    recursive: bool,
) -> None:
    """Import certificates into a truststore as trusted entries."""
    console = Console()
    service = _service(ctx)
    job_id = new_job_id("import")

    with ProgressManager(console).track_batch("Importing") as on_progress:
        result = _run_job(
            service,
            job_id,
            lambda: service.batch_import_truststore(
                keystore,
                password,
                input_dir,
                extensions=extensions or None,
                alias_prefix=alias_prefix,
                recursive=recursive,
                on_progress=on_progress,
                job_id=job_id,
            ),
        )

    _print_batch_result(console, result, f"Import into {Path(keystore).name}")
    _exit_for(ctx, result)


@batch.command("report")
@click.argument("input_dir", type=click.Path(file_okay=False))
@click.option(
    "--warning-days",
    "-w",
    type=click.IntRange(min=0),
    default=None,
    help="Days at or below which a certificate is expiring soon",
)
@click.option(
    "--csv",
    "csv_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Also write the report as CSV ('-' for stdout)",
)
@extensions_option
@recursive_option
@click.pass_context
def batch_report(
    ctx: click.Context,
    input_dir: str,
    warning_days: int | None,
    csv_path: str | None,
    extensions: tuple[str, ...],
    recursive: bool,
) -> None:
    """Report certificate expiration dates, soonest first."""
    console = Console(stderr=csv_path == "-")
    service = _service(ctx)
    job_id = new_job_id("report")

    with ProgressManager(console).track_batch("Inspecting") as on_progress:
        report = _run_job(
            service,
            job_id,
            lambda: service.generate_expiration_report(
                input_dir,
                extensions=extensions or None,
                recursive=recursive,
                warning_days=warning_days,
                on_progress=on_progress,
                job_id=job_id,
            ),
        )

    table = Table(title=f"Certificate expiration ({report.warning_days} day warning)")
    table.add_column("File", style="cyan")
    table.add_column("Subject")
    table.add_column("Days", justify="right")
    table.add_column("Status")
    for item in report.items:
        style = _EXPIRATION_STYLES[item.status]
        table.add_row(
            item.file_name,
            item.subject,
            str(item.days_until_expiration),
            f"[{style}]{item.status.value}[/{style}]",
        )
    console.print(table)
    console.print(
        f"{report.total_certificates} certificates: {report.valid_count} valid, "
        f"{report.expiring_soon_count} expiring soon, {report.expired_count} expired"
    )
    for failed in report.failed_files:
        console.print(f"[yellow]Could not inspect {failed}[/yellow]")

    if csv_path == "-":
        sys.stdout.write(export_report_csv(report))
    elif csv_path:
        Path(csv_path).write_text(export_report_csv(report), encoding="utf-8")
        console.print(f"CSV written to {csv_path}")


def main() -> None:
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
