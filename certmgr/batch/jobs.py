"""Concrete batch jobs built on the coordinator.

Each job pairs a directory scan with one toolkit operation per file:
format conversion, public key extraction, truststore import and the
expiration report.
"""

from __future__ import annotations

import csv
import io
import logging
import time
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from certmgr.batch.coordinator import (
    BatchJobCoordinator,
    CancellationToken,
    ProgressCallback,
)
from certmgr.config.config import get_batch_config
from certmgr.executor.base import OperationResult
from certmgr.models import (
    BatchItem,
    BatchJobDescriptor,
    BatchResult,
    CertificateFormat,
    ExpirationReport,
    ExpirationStatus,
)
from certmgr.toolkits.keytool import KeytoolToolkit, make_alias
from certmgr.toolkits.openssl import OpenSSLToolkit
from certmgr.toolkits.paths import output_path_for

logger = logging.getLogger(__name__)

CSV_HEADERS = ["File", "Subject", "Issuer", "Valid From", "Valid To", "Days Remaining", "Status"]

_STATUS_LABELS = {
    ExpirationStatus.VALID: "Valid",
    ExpirationStatus.EXPIRING_SOON: "Expiring soon",
    ExpirationStatus.EXPIRED: "Expired",
}


def new_job_id(kind: str) -> str:
    return f"{kind}-{int(time.time() * 1000)}"


def _iso_date(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def export_report_csv(report: ExpirationReport) -> str:
    """Render an expiration report as CSV, one row per certificate."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for item in report.items:
        writer.writerow(
            [
                item.file_name,
                item.subject,
                item.issuer,
                _iso_date(item.valid_from),
                _iso_date(item.valid_to),
                item.days_until_expiration,
                _STATUS_LABELS[item.status],
            ]
        )
    return buffer.getvalue()


class BatchService:
    """Batch operations over directories of certificates."""

    def __init__(
        self,
        openssl: OpenSSLToolkit | None = None,
        keytool: KeytoolToolkit | None = None,
        coordinator: BatchJobCoordinator | None = None,
    ):
        """Initialize batch service.

        Args:
            openssl: openssl adapter
            keytool: keytool adapter
            coordinator: Runs the jobs; shared so jobs can be cancelled by id

        """
        self.openssl = openssl or OpenSSLToolkit()
        self.keytool = keytool or KeytoolToolkit()
        self.coordinator = coordinator or BatchJobCoordinator()

    def cancel(self, job_id: str) -> bool:
        """Cancel a running job; see :meth:`BatchJobCoordinator.cancel`."""
        return self.coordinator.cancel(job_id)

    def _descriptor(
        self,
        kind: str,
        input_dir: str | Path,
        extensions: Iterable[str] | None,
        recursive: bool,
        job_id: str | None,
    ) -> BatchJobDescriptor:
        return BatchJobDescriptor(
            job_id=job_id or new_job_id(kind),
            input_dir=Path(input_dir),
            extensions=list(extensions) if extensions else get_batch_config().default_extensions,
            recursive=recursive,
        )

    async def batch_convert(
        self,
        input_dir: str | Path,
        output_dir: str | Path,
        output_format: CertificateFormat,
        extensions: Iterable[str] | None = None,
        recursive: bool = False,
        on_progress: ProgressCallback | None = None,
        job_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> BatchResult:
        """Convert every certificate under ``input_dir`` to ``output_format``.

        Each file's actual encoding is detected, so ``.crt`` files holding
        DER are converted correctly. Outputs are named ``<stem>.pem|.der``.
        """
        job = self._descriptor("convert", input_dir, extensions, recursive, job_id)
        extension = ".der" if output_format is CertificateFormat.DER else ".pem"

        async def convert(item: BatchItem) -> OperationResult[str]:
            detected = self.openssl.detector.detect_format(item.input_path).format
            input_format = (
                CertificateFormat.DER
                if detected is CertificateFormat.DER
                else CertificateFormat.PEM
            )
            return await self.openssl.convert_certificate(
                item.input_path,
                output_path_for(item.input_path, output_dir, extension),
                output_format,
                input_format=input_format,
            )

        Path(output_dir).mkdir(parents=True, exist_ok=True)
        return await self.coordinator.run(job, convert, on_progress=on_progress, token=token)

    async def batch_extract_public_keys(
        self,
        input_dir: str | Path,
        output_dir: str | Path,
        extensions: Iterable[str] | None = None,
        recursive: bool = False,
        on_progress: ProgressCallback | None = None,
        job_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> BatchResult:
        """Write ``<stem>_public.pem`` for every certificate under ``input_dir``."""
        job = self._descriptor("extract", input_dir, extensions, recursive, job_id)

        async def extract(item: BatchItem) -> OperationResult[str]:
            return await self.openssl.extract_public_key(
                item.input_path,
                output_path_for(item.input_path, output_dir, ".pem", suffix="_public"),
            )

        Path(output_dir).mkdir(parents=True, exist_ok=True)
        return await self.coordinator.run(job, extract, on_progress=on_progress, token=token)

    async def batch_import_truststore(
        self,
        keystore: str | Path,
        password: str,
        input_dir: str | Path,
        extensions: Iterable[str] | None = None,
        alias_prefix: str = "",
        recursive: bool = False,
        on_progress: ProgressCallback | None = None,
        job_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> BatchResult:
        """Import every certificate under ``input_dir`` as a trusted entry.

        Aliases are ``alias_prefix`` plus the file stem. Item output paths
        hold the alias used.
        """
        job = self._descriptor("import", input_dir, extensions, recursive, job_id)

        async def import_one(item: BatchItem) -> OperationResult[str]:
            return await self.keytool.import_certificate(
                keystore,
                password,
                make_alias(alias_prefix, item.input_path),
                item.input_path,
                trust_ca_certs=True,
            )

        return await self.coordinator.run(
            job,
            import_one,
            on_progress=on_progress,
            token=token,
            inter_item_delay=get_batch_config().truststore_import_delay,
        )

    async def generate_expiration_report(
        self,
        input_dir: str | Path,
        extensions: Iterable[str] | None = None,
        recursive: bool = False,
        warning_days: int | None = None,
        on_progress: ProgressCallback | None = None,
        job_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> ExpirationReport:
        """Report certificate expiry under ``input_dir``, soonest first."""
        job = self._descriptor("report", input_dir, extensions, recursive, job_id)
        report = await self.coordinator.run_expiration_report(
            job,
            self.openssl.read_certificate_dates,
            warning_days=warning_days,
            on_progress=on_progress,
            token=token,
        )
        if report.failed_files:
            logger.info(
                "%d file(s) could not be inspected for the expiration report",
                len(report.failed_files),
            )
        return report
