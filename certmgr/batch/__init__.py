"""Batch processing over directories of certificates."""

from __future__ import annotations

from certmgr.batch.coordinator import (
    BatchJobCoordinator,
    CancellationToken,
    classify_expiration,
    days_until,
)
from certmgr.batch.jobs import BatchService, export_report_csv

__all__ = [
    "BatchJobCoordinator",
    "BatchService",
    "CancellationToken",
    "classify_expiration",
    "days_until",
    "export_report_csv",
]
