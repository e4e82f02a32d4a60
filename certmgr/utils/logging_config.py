"""Structured logging configuration for certmgr.

Provides logging setup with a Rich console handler, correlation IDs for
batch runs, and optional JSON output to a rotating log file.
"""

from __future__ import annotations

import json
import logging
import logging.config
import time
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING, Any, cast

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

if TYPE_CHECKING:  # pragma: no cover
    from certmgr.models import ObservabilityConfig

# Context variable for correlation ID
correlation_id: ContextVar[str | None] = cast(
    "ContextVar[str | None]",
    ContextVar("correlation_id", default=None),
)

# Attributes every LogRecord carries; anything else was passed via extra=
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "correlation_id",
    }
)


class CorrelationFilter(logging.Filter):
    """Filter to add correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add correlation ID to log record."""
        record.correlation_id = correlation_id.get() or "no-correlation-id"
        return True


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for logs."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry: dict[str, Any] = {
            "timestamp": time.time(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "correlation_id"):
            log_entry["correlation_id"] = record.correlation_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        log_entry.update(
            {
                key: value
                for key, value in record.__dict__.items()
                if key not in _RESERVED_RECORD_KEYS
            }
        )
        return json.dumps(log_entry, default=str)


class FileFormatter(logging.Formatter):
    """Formatter for file output that strips Rich markup."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record, stripping Rich markup for file output."""
        formatted = super().format(record)
        try:
            return Text.from_markup(formatted).plain
        except Exception:
            # Messages containing stray brackets are not valid markup
            return formatted


def create_rich_handler(
    console: Console | None = None,
    level: int | str = logging.INFO,
    show_path: bool = False,
    rich_tracebacks: bool = True,
) -> logging.Handler:
    """Create a RichHandler for console output.

    Args:
        console: Optional Rich Console instance, defaults to stderr
        level: Log level
        show_path: Whether to show file paths in log output
        rich_tracebacks: Whether to use rich tracebacks

    Returns:
        Configured RichHandler instance

    """
    if console is None:
        console = Console(stderr=True)

    handler = RichHandler(
        console=console,
        level=level,
        show_path=show_path,
        rich_tracebacks=rich_tracebacks,
        markup=False,
    )
    handler.addFilter(CorrelationFilter())
    return handler


def setup_logging(config: ObservabilityConfig) -> None:
    """Set up logging configuration with Rich console output."""
    level = config.log_level.value

    logging_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": StructuredFormatter,
            },
            "simple": {
                "()": FileFormatter,
                "format": "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s.%(funcName)s: %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
        },
        "filters": {
            "correlation": {
                "()": CorrelationFilter,
            },
        },
        "handlers": {},
        "loggers": {
            "certmgr": {
                "level": level,
                "handlers": [],
                "propagate": False,
            },
        },
    }

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logging_config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "structured" if config.structured_logging else "simple",
            "filters": ["correlation"],
            "filename": str(log_path),
            "maxBytes": 10 * 1024 * 1024,  # 10MB
            "backupCount": 5,
            "encoding": "utf-8",
        }
        logging_config["loggers"]["certmgr"]["handlers"].append("file")

    logging.config.dictConfig(logging_config)

    # RichHandler needs a live Console, so it is attached after dictConfig
    logging.getLogger("certmgr").addHandler(create_rich_handler(level=level))

    if config.log_correlation_id:
        correlation_id.set(str(uuid.uuid4()))


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(f"certmgr.{name}")


def set_correlation_id(corr_id: str | None = None) -> str:
    """Set correlation ID for the current context."""
    if corr_id is None:
        corr_id = str(uuid.uuid4())
    correlation_id.set(corr_id)
    return corr_id


def get_correlation_id() -> str | None:
    """Get the current correlation ID."""
    return correlation_id.get()


class LoggingContext:
    """Context manager that logs the start, end and duration of an operation."""

    def __init__(
        self,
        operation: str,
        log_level: int = logging.DEBUG,
        slow_threshold: float = 1.0,
        **kwargs: Any,
    ):
        """Initialize operation context manager.

        Args:
            operation: Name of the operation
            log_level: Level for start/finish records
            slow_threshold: Duration in seconds above which completion is logged at INFO
            **kwargs: Additional context to include in logs

        """
        self.operation = operation
        self.kwargs = kwargs
        self.logger = get_logger("operations")
        self.start_time: float | None = None
        self.duration = 0.0
        self.log_level = log_level
        self.slow_threshold = slow_threshold
        self._token: Any = None

    def __enter__(self) -> LoggingContext:
        """Enter the context manager."""
        self.start_time = time.monotonic()
        self._token = correlation_id.set(str(uuid.uuid4()))
        self.logger.log(self.log_level, "Starting %s", self.operation, extra=self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit the context manager."""
        self.duration = time.monotonic() - self.start_time if self.start_time else 0.0
        try:
            if exc_type is None:
                level = (
                    logging.INFO
                    if self.duration >= self.slow_threshold
                    else self.log_level
                )
                self.logger.log(
                    level,
                    "Completed %s in %.3fs",
                    self.operation,
                    self.duration,
                    extra=self.kwargs,
                )
            else:
                self.logger.error(
                    "Failed %s after %.3fs: %s",
                    self.operation,
                    self.duration,
                    exc_val,
                    extra=self.kwargs,
                )
        finally:
            correlation_id.reset(self._token)
