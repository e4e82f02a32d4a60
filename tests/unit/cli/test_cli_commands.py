"""Tests for the certmgr command line interface."""

from __future__ import annotations

import csv
from pathlib import Path

import pytest
from click.testing import CliRunner
from rich.console import Console

pytestmark = [pytest.mark.unit, pytest.mark.cli]

from certmgr.cli.main import cli
from certmgr.cli.progress import ProgressManager
from certmgr.models import (
    BatchItem,
    BatchItemStatus,
    BatchProgress,
    BatchResult,
    CertificateFormat,
    ExpirationReport,
    ExpirationReportItem,
    ExpirationStatus,
)
from certmgr.utils.exceptions import BatchError


def batch_result(job_id="job", failed=False):
    ok = BatchItem(id="item-0", input_path=Path("a.pem"), status=BatchItemStatus.SUCCESS)
    ok.output_path = "out/a.der"
    items = [ok]
    if failed:
        items.append(
            BatchItem(
                id="item-1",
                input_path=Path("b.pem"),
                status=BatchItemStatus.ERROR,
                error_message="Failed to convert certificate",
            )
        )
    return BatchResult(
        job_id=job_id,
        success=not failed,
        total_items=len(items),
        success_count=1,
        failed_count=len(items) - 1,
        items=items,
    )


class FakeService:
    """Stands in for BatchService; records calls and reports progress once."""

    def __init__(self, result=None, report=None):
        self.result = result or batch_result()
        self.report = report
        self.calls = []

    def cancel(self, job_id):
        return False

    def _progress(self, kwargs):
        kwargs["on_progress"](
            BatchProgress(
                job_id=kwargs["job_id"],
                current_item=1,
                total_items=1,
                current_file="a.pem",
                percent_complete=100,
            )
        )

    async def batch_convert(self, input_dir, output_dir, output_format, **kwargs):
        self.calls.append(("convert", input_dir, output_dir, output_format, kwargs))
        self._progress(kwargs)
        return self.result

    async def batch_extract_public_keys(self, input_dir, output_dir, **kwargs):
        self.calls.append(("extract", input_dir, output_dir, kwargs))
        return self.result

    async def batch_import_truststore(self, keystore, password, input_dir, **kwargs):
        self.calls.append(("import", keystore, password, input_dir, kwargs))
        return self.result

    async def generate_expiration_report(self, input_dir, **kwargs):
        self.calls.append(("report", input_dir, kwargs))
        return self.report


@pytest.fixture
def runner():
    return CliRunner()


class TestCli:
    """Test top-level commands."""

    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "check" in result.output
        assert "batch" in result.output

    def test_batch_help_lists_jobs(self, runner):
        result = runner.invoke(cli, ["batch", "--help"])
        assert result.exit_code == 0
        for name in ("convert", "extract-public", "import-truststore", "report"):
            assert name in result.output

    def test_invalid_config_file(self, runner, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[execution]\ndefault_timeout = 0\n", encoding="utf-8")
        result = runner.invoke(cli, ["--config", str(path), "check"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_check_unconfigured(self, runner):
        result = runner.invoke(cli, ["check"])
        assert result.exit_code == 1
        assert "OPENSSL_NOT_CONFIGURED" in result.output
        assert "JDK_NOT_CONFIGURED" in result.output


class TestBatchCommands:
    """Test batch subcommands against a fake service."""

    def test_convert(self, runner, tmp_path):
        service = FakeService()
        result = runner.invoke(
            cli,
            ["batch", "convert", str(tmp_path), str(tmp_path / "out"), "-f", "DER", "-e", "crt", "-r"],
            obj={"service": service},
        )
        assert result.exit_code == 0, result.output
        kind, _, _, output_format, kwargs = service.calls[0]
        assert kind == "convert"
        assert output_format is CertificateFormat.DER
        assert kwargs["extensions"] == ("crt",)
        assert kwargs["recursive"] is True
        assert kwargs["job_id"].startswith("convert-")
        assert "1 succeeded, 0 failed" in result.output

    def test_failures_exit_nonzero(self, runner, tmp_path):
        service = FakeService(result=batch_result(failed=True))
        result = runner.invoke(
            cli,
            ["batch", "extract-public", str(tmp_path), str(tmp_path / "keys")],
            obj={"service": service},
        )
        assert result.exit_code == 1
        assert service.calls[0][3]["extensions"] is None
        assert "1 failed" in result.output

    def test_batch_error_reported_without_traceback(self, runner, tmp_path):
        class FailingService(FakeService):
            async def batch_convert(self, input_dir, output_dir, output_format, **kwargs):
                raise BatchError(f"Input directory does not exist: {input_dir}")

        result = runner.invoke(
            cli,
            ["batch", "convert", str(tmp_path / "missing"), str(tmp_path / "out")],
            obj={"service": FailingService()},
        )

        assert result.exit_code == 1
        assert "Input directory does not exist" in result.output
        assert "Traceback" not in result.output
        assert not isinstance(result.exception, BatchError)

    def test_import_truststore_password_option(self, runner, tmp_path):
        service = FakeService()
        result = runner.invoke(
            cli,
            [
                "batch",
                "import-truststore",
                str(tmp_path / "trust.jks"),
                str(tmp_path),
                "--password",
                "changeit",
                "--alias-prefix",
                "corp-",
            ],
            obj={"service": service},
        )
        assert result.exit_code == 0, result.output
        _, keystore, password, _, kwargs = service.calls[0]
        assert keystore == str(tmp_path / "trust.jks")
        assert password == "changeit"
        assert kwargs["alias_prefix"] == "corp-"

    def test_import_truststore_prompts_for_password(self, runner, tmp_path):
        service = FakeService()
        result = runner.invoke(
            cli,
            ["batch", "import-truststore", str(tmp_path / "t.jks"), str(tmp_path)],
            input="s3cret\n",
            obj={"service": service},
        )
        assert result.exit_code == 0, result.output
        assert service.calls[0][2] == "s3cret"
        assert "s3cret" not in result.output

    def test_report_writes_csv(self, runner, tmp_path):
        report = ExpirationReport(
            scanned_dir=str(tmp_path),
            warning_days=14,
            total_certificates=1,
            expiring_soon_count=1,
            items=[
                ExpirationReportItem(
                    path=str(tmp_path / "a.pem"),
                    file_name="a.pem",
                    subject="CN=a",
                    valid_from=0.0,
                    valid_to=86400.0,
                    days_until_expiration=3,
                    status=ExpirationStatus.EXPIRING_SOON,
                )
            ],
        )
        service = FakeService(report=report)
        csv_path = tmp_path / "report.csv"

        result = runner.invoke(
            cli,
            ["batch", "report", str(tmp_path), "-w", "14", "--csv", str(csv_path)],
            obj={"service": service},
        )

        assert result.exit_code == 0, result.output
        assert service.calls[0][2]["warning_days"] == 14
        rows = list(csv.reader(csv_path.read_text(encoding="utf-8").splitlines()))
        assert rows[1][0] == "a.pem"
        assert rows[1][-1] == "Expiring soon"


class TestProgressManager:
    """Test the Rich progress bridge."""

    def test_create_progress_columns(self):
        progress = ProgressManager(Console()).create_progress()
        assert len(progress.columns) == 7

    def test_track_batch_updates_task(self):
        manager = ProgressManager(Console(force_terminal=False))
        with manager.track_batch("Converting") as on_progress:
            on_progress(
                BatchProgress(
                    job_id="j",
                    current_item=2,
                    total_items=4,
                    current_file="b.pem",
                    percent_complete=50,
                )
            )
