"""Pydantic models for certmgr.

Provides validated configuration and batch data models.
"""

from __future__ import annotations

import time
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BatchItemStatus(str, Enum):
    """Lifecycle states of a single batch item."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"


class ExpirationStatus(str, Enum):
    """Certificate expiration classification."""

    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


class CertificateFormat(str, Enum):
    """On-disk certificate container formats."""

    PEM = "PEM"
    DER = "DER"
    PKCS12 = "PKCS12"
    PKCS7 = "PKCS7"
    UNKNOWN = "UNKNOWN"


# Allowed forward transitions for batch items
_ITEM_TRANSITIONS: dict[BatchItemStatus, set[BatchItemStatus]] = {
    BatchItemStatus.PENDING: {BatchItemStatus.PROCESSING},
    BatchItemStatus.PROCESSING: {BatchItemStatus.SUCCESS, BatchItemStatus.ERROR},
    BatchItemStatus.SUCCESS: set(),
    BatchItemStatus.ERROR: set(),
}


class ToolkitConfig(BaseModel):
    """External toolkit locations."""

    openssl_path: str | None = Field(
        default=None,
        description="Path to the openssl executable",
    )
    jdk_root_path: str | None = Field(
        default=None,
        description="JDK installation root containing bin/keytool",
    )


class ExecutionConfig(BaseModel):
    """Subprocess execution configuration."""

    default_timeout: float = Field(
        default=30.0,
        gt=0.0,
        le=3600.0,
        description="Default command timeout in seconds",
    )
    prompt_buffer_size: int = Field(
        default=1024,
        ge=64,
        le=65536,
        description="Characters of trailing output kept for prompt matching",
    )
    allow_inline_secret_fallback: bool = Field(
        default=True,
        description="Allow passing secrets inline as a last compatibility resort",
    )
    temp_dir_name: str = Field(
        default="certmgr-temp",
        description="Directory under the system temp dir for scratch files",
    )


class BatchConfig(BaseModel):
    """Batch job configuration."""

    inter_item_delay: float = Field(
        default=0.01,
        ge=0.0,
        le=10.0,
        description="Delay between batch items in seconds",
    )
    truststore_import_delay: float = Field(
        default=0.05,
        ge=0.0,
        le=10.0,
        description="Delay between truststore imports in seconds",
    )
    warning_days: int = Field(
        default=30,
        ge=0,
        le=3650,
        description="Days before expiry at which a certificate is expiring soon",
    )
    default_extensions: list[str] = Field(
        default_factory=lambda: [".pem", ".crt", ".cer", ".der"],
        description="Extensions scanned when none are given",
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False,
        description="Write JSON records to the log file",
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )


class Config(BaseModel):
    """Main certmgr configuration."""

    toolkits: ToolkitConfig = Field(default_factory=ToolkitConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


class BatchJobDescriptor(BaseModel):
    """What a batch run scans."""

    job_id: str = Field(..., min_length=1, description="Caller-chosen job id")
    input_dir: Path = Field(..., description="Directory to scan")
    extensions: list[str] = Field(
        default_factory=list,
        description="Allowed file extensions",
    )
    recursive: bool = Field(default=False, description="Descend into subdirectories")

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: list[str]) -> list[str]:
        """Lower-case extensions and ensure a leading dot."""
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return normalized


class BatchItem(BaseModel):
    """One file-level unit of work within a batch."""

    id: str
    input_path: Path
    status: BatchItemStatus = BatchItemStatus.PENDING
    output_path: str | None = None
    error_message: str | None = None

    def transition(self, status: BatchItemStatus) -> None:
        """Move the item forward in its lifecycle.

        Raises:
            ValueError: If the transition would move the item backwards.

        """
        if status not in _ITEM_TRANSITIONS[self.status]:
            msg = f"Invalid batch item transition {self.status.value} -> {status.value}"
            raise ValueError(msg)
        self.status = status


class BatchProgress(BaseModel):
    """Progress notification emitted before each item is processed."""

    job_id: str
    current_item: int = Field(..., ge=1)
    total_items: int = Field(..., ge=1)
    current_file: str
    percent_complete: int = Field(..., ge=0, le=100)


class BatchResult(BaseModel):
    """Aggregated outcome of a batch run."""

    job_id: str
    success: bool
    total_items: int
    success_count: int
    failed_count: int
    items: list[BatchItem] = Field(default_factory=list)
    duration: float = Field(default=0.0, description="Run time in seconds")
    cancelled: bool = False

    @property
    def pending_count(self) -> int:
        """Items never started because the run was cancelled."""
        return sum(1 for item in self.items if item.status == BatchItemStatus.PENDING)


class CertificateDates(BaseModel):
    """Fields read from a certificate for expiration reporting."""

    subject: str = ""
    issuer: str = ""
    serial_number: str = ""
    valid_from: float = Field(..., description="notBefore as a UNIX timestamp")
    valid_to: float = Field(..., description="notAfter as a UNIX timestamp")


class ExpirationReportItem(BaseModel):
    """Expiration status of a single certificate file."""

    path: str
    file_name: str
    subject: str = ""
    issuer: str = ""
    serial_number: str = ""
    valid_from: float
    valid_to: float
    days_until_expiration: int
    status: ExpirationStatus


class ExpirationReport(BaseModel):
    """Expiration report over a directory tree."""

    generated_at: float = Field(default_factory=time.time)
    scanned_dir: str
    warning_days: int
    total_certificates: int = 0
    valid_count: int = 0
    expiring_soon_count: int = 0
    expired_count: int = 0
    items: list[ExpirationReportItem] = Field(default_factory=list)
    failed_files: list[str] = Field(default_factory=list)
