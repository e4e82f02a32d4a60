"""Batch job coordination.

Discovers files under a directory, drives each through a caller-supplied
operation one at a time, and aggregates the outcome. Progress is reported
before each item; cancellation is checked between items.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import Union

from certmgr.config.config import get_batch_config
from certmgr.executor.base import OperationResult
from certmgr.models import (
    BatchItem,
    BatchItemStatus,
    BatchJobDescriptor,
    BatchProgress,
    BatchResult,
    CertificateDates,
    ExpirationReport,
    ExpirationReportItem,
    ExpirationStatus,
)
from certmgr.utils.exceptions import BatchError
from certmgr.utils.logging_config import LoggingContext
from certmgr.utils.sanitize import sanitize_error

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

ItemOperation = Callable[[BatchItem], Awaitable[OperationResult[str]]]
ProgressCallback = Callable[[BatchProgress], Union[Awaitable[None], None]]
CertificateInspector = Callable[[Path], Awaitable[OperationResult[CertificateDates]]]


class CancellationToken:
    """Cooperative cancellation flag for one batch run."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


def normalize_extensions(extensions: Iterable[str]) -> set[str]:
    """Lower-case extensions with a leading dot."""
    normalized = set()
    for ext in extensions:
        ext = ext.strip().lower()
        if ext:
            normalized.add(ext if ext.startswith(".") else f".{ext}")
    return normalized


def percent_complete(current: int, total: int) -> int:
    """Percentage of ``current`` over ``total``, halves rounded up."""
    return math.floor(current * 100 / total + 0.5)


def days_until(valid_to: float, now: float) -> int:
    """Whole days from ``now`` until ``valid_to``, rounded up."""
    return math.ceil((valid_to - now) / SECONDS_PER_DAY)


def classify_expiration(days: int, warning_days: int) -> ExpirationStatus:
    """Classify a certificate by its remaining days."""
    if days < 0:
        return ExpirationStatus.EXPIRED
    if days <= warning_days:
        return ExpirationStatus.EXPIRING_SOON
    return ExpirationStatus.VALID


class BatchJobCoordinator:
    """Runs batch jobs sequentially with progress and cancellation."""

    def __init__(self, inter_item_delay: float | None = None):
        """Initialize batch coordinator.

        Args:
            inter_item_delay: Seconds to pause between items, defaults to
                ``batch.inter_item_delay``

        """
        if inter_item_delay is None:
            inter_item_delay = get_batch_config().inter_item_delay
        self.inter_item_delay = inter_item_delay
        self._tokens: dict[str, CancellationToken] = {}

    def discover_files(
        self,
        root: str | Path,
        extensions: Iterable[str],
        recursive: bool = False,
    ) -> list[Path]:
        """List files under ``root`` whose extension is allowed.

        Entries are visited in sorted name order so runs are reproducible.
        A missing root yields no files.
        """
        root = Path(root)
        if not root.is_dir():
            logger.debug("Batch input directory %s does not exist", root)
            return []

        allowed = normalize_extensions(extensions)
        found: list[Path] = []

        def scan(directory: Path) -> None:
            try:
                entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
            except OSError as e:
                logger.warning("Cannot list %s: %s", directory, e)
                return
            for entry in entries:
                if entry.is_dir():
                    if recursive and not entry.is_symlink():
                        scan(entry)
                elif entry.is_file() and entry.suffix.lower() in allowed:
                    found.append(entry)

        scan(root)
        return found

    def cancel(self, job_id: str) -> bool:
        """Request cancellation of a running job.

        Returns:
            True if a run with this id was active

        """
        token = self._tokens.get(job_id)
        if token is None:
            return False
        logger.info("Cancellation requested for batch job %s", job_id)
        token.cancel()
        return True

    def is_running(self, job_id: str) -> bool:
        return job_id in self._tokens

    async def run(
        self,
        job: BatchJobDescriptor,
        operation: ItemOperation,
        on_progress: ProgressCallback | None = None,
        token: CancellationToken | None = None,
        inter_item_delay: float | None = None,
    ) -> BatchResult:
        """Run ``operation`` over every file the job selects.

        Args:
            job: Directory, extensions and job id
            operation: Per-item work; a failed result or a raised exception
                marks the item as errored without stopping the run
            on_progress: Sync or async callback invoked before each item
            token: Cancellation token, a fresh one when None
            inter_item_delay: Override of the pause between items

        Returns:
            BatchResult; cancelled runs leave unstarted items pending

        Raises:
            BatchError: If a run with the same job id is already active.

        """
        if job.job_id in self._tokens:
            msg = f"Batch job {job.job_id} is already running"
            raise BatchError(msg, {"job_id": job.job_id})

        files = self.discover_files(job.input_dir, job.extensions, job.recursive)
        items = [
            BatchItem(id=f"item-{index}", input_path=path)
            for index, path in enumerate(files)
        ]
        if not items:
            logger.info("Batch job %s found no matching files", job.job_id)
            return BatchResult(
                job_id=job.job_id,
                success=True,
                total_items=0,
                success_count=0,
                failed_count=0,
            )

        delay = self.inter_item_delay if inter_item_delay is None else inter_item_delay
        token = token or CancellationToken()
        self._tokens[job.job_id] = token
        success_count = 0
        failed_count = 0
        total = len(items)
        start = time.monotonic()

        try:
            with LoggingContext("batch_run", log_level=logging.INFO, job_id=job.job_id):
                for index, item in enumerate(items, start=1):
                    if token.cancelled:
                        logger.info(
                            "Batch job %s cancelled after %d of %d items",
                            job.job_id,
                            index - 1,
                            total,
                        )
                        break

                    item.transition(BatchItemStatus.PROCESSING)
                    if on_progress is not None:
                        notified = on_progress(
                            BatchProgress(
                                job_id=job.job_id,
                                current_item=index,
                                total_items=total,
                                current_file=item.input_path.name,
                                percent_complete=percent_complete(index, total),
                            )
                        )
                        if asyncio.iscoroutine(notified):
                            await notified

                    if await self._process_item(item, operation):
                        success_count += 1
                    else:
                        failed_count += 1

                    if delay > 0 and index < total:
                        await asyncio.sleep(delay)
        finally:
            self._tokens.pop(job.job_id, None)

        return BatchResult(
            job_id=job.job_id,
            success=failed_count == 0,
            total_items=total,
            success_count=success_count,
            failed_count=failed_count,
            items=items,
            duration=time.monotonic() - start,
            cancelled=token.cancelled,
        )

    async def _process_item(self, item: BatchItem, operation: ItemOperation) -> bool:
        try:
            outcome = await operation(item)
        except Exception as e:
            logger.warning("Batch item %s raised: %s", item.input_path.name, sanitize_error(e))
            item.transition(BatchItemStatus.ERROR)
            item.error_message = sanitize_error(e)
            return False

        if outcome.success:
            item.transition(BatchItemStatus.SUCCESS)
            item.output_path = outcome.data
            return True

        item.transition(BatchItemStatus.ERROR)
        item.error_message = outcome.error_message or "Unknown error"
        logger.debug("Batch item %s failed: %s", item.input_path.name, item.error_message)
        return False

    async def run_expiration_report(
        self,
        job: BatchJobDescriptor,
        inspect: CertificateInspector,
        warning_days: int | None = None,
        on_progress: ProgressCallback | None = None,
        now: float | None = None,
        token: CancellationToken | None = None,
    ) -> ExpirationReport:
        """Build an expiration report over the job's files.

        Args:
            job: Directory, extensions and job id
            inspect: Reads the validity dates of one file
            warning_days: Days at or below which a certificate is expiring soon
            on_progress: Sync or async callback invoked before each file
            now: Reference time as a UNIX timestamp, current time when None
            token: Cancellation token

        Returns:
            ExpirationReport with items sorted by days remaining, soonest first

        """
        if warning_days is None:
            warning_days = get_batch_config().warning_days
        reference = time.time() if now is None else now
        entries: list[ExpirationReportItem] = []

        async def operation(item: BatchItem) -> OperationResult[str]:
            inspected = await inspect(item.input_path)
            if not inspected.success or inspected.data is None:
                return OperationResult(success=False, error=inspected.error)

            dates = inspected.data
            days = days_until(dates.valid_to, reference)
            status = classify_expiration(days, warning_days)
            if dates.valid_to < reference:
                status = ExpirationStatus.EXPIRED
            entries.append(
                ExpirationReportItem(
                    path=str(item.input_path),
                    file_name=item.input_path.name,
                    subject=dates.subject,
                    issuer=dates.issuer,
                    serial_number=dates.serial_number,
                    valid_from=dates.valid_from,
                    valid_to=dates.valid_to,
                    days_until_expiration=days,
                    status=status,
                )
            )
            return OperationResult.ok(str(item.input_path))

        result = await self.run(job, operation, on_progress=on_progress, token=token)

        entries.sort(key=lambda entry: entry.days_until_expiration)
        return ExpirationReport(
            scanned_dir=str(job.input_dir),
            warning_days=warning_days,
            total_certificates=len(entries),
            valid_count=sum(1 for e in entries if e.status is ExpirationStatus.VALID),
            expiring_soon_count=sum(
                1 for e in entries if e.status is ExpirationStatus.EXPIRING_SOON
            ),
            expired_count=sum(1 for e in entries if e.status is ExpirationStatus.EXPIRED),
            items=entries,
            failed_files=[
                str(item.input_path)
                for item in result.items
                if item.status is BatchItemStatus.ERROR
            ],
        )
