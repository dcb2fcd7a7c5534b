"""
Logging configuration for NiORM.

Every module logs through ``logging.getLogger(__name__)`` below the ``niorm``
logger. Nothing is emitted unless ``configure_logging`` installs handlers, and
those handlers never raise: a failing sink must not break a database call.

Records may carry two extra fields, ``operation`` and ``sql``. The collection
passes them through ``extra=``; ``operation_context`` scopes an operation name
for every record logged inside it.
"""

import json
import logging
import os
import sys
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from datetime import datetime
from typing import Any

ROOT_LOGGER_NAME = "niorm"
MASK_REPLACEMENT = "***MASKED***"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

operation_var: ContextVar[str | None] = ContextVar("niorm_operation", default=None)


@dataclass
class LoggingConfig:
    """Configuration of the ``niorm`` logger."""

    enabled: bool = False
    level: str = "WARNING"
    format_type: str = "text"  # "text" or "json"
    log_file: str | None = None
    mask_parameters: bool = True

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Load logging settings from ``NIORM_LOG_*`` environment variables."""
        return cls(
            enabled=os.getenv("NIORM_LOG_ENABLED", "false").lower() == "true",
            level=os.getenv("NIORM_LOG_LEVEL", "WARNING").upper(),
            format_type=os.getenv("NIORM_LOG_FORMAT", "text").lower(),
            log_file=os.getenv("NIORM_LOG_FILE") or None,
            mask_parameters=os.getenv("NIORM_LOG_MASK_PARAMETERS", "true").lower() == "true",
        )


class SafeStreamHandler(logging.StreamHandler):
    """Stream handler whose write failures are dropped."""

    def handleError(self, record: logging.LogRecord) -> None:
        # Write failures are ignored
        pass


class SafeFileHandler(logging.FileHandler):
    """File handler whose write failures are dropped.

    The file is opened lazily so that an unwritable path only fails at emit
    time, where the failure is ignored.
    """

    def __init__(self, filename: str, encoding: str | None = "utf-8") -> None:
        super().__init__(filename, mode="a", encoding=encoding, delay=True)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            super().emit(record)
        except OSError:
            self.handleError(record)

    def handleError(self, record: logging.LogRecord) -> None:
        pass


class SqlLogFilter(logging.Filter):
    """Attaches ``operation`` and ``sql`` to every record, masking parameters if asked."""

    def __init__(self, mask_parameters: bool = True) -> None:
        super().__init__()
        self.mask_parameters = mask_parameters

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "operation", None) is None:
            record.operation = operation_var.get()
        if not hasattr(record, "sql"):
            record.sql = None

        params = getattr(record, "params", None)
        if self.mask_parameters and isinstance(params, dict):
            record.params = {name: MASK_REPLACEMENT for name in params}
        return True


class SqlTextFormatter(logging.Formatter):
    """Plain text lines: ``... [operation] message | SQL: text``."""

    def __init__(self) -> None:
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        operation = getattr(record, "operation", None)
        if operation:
            line = line.replace(record.getMessage(), f"[{operation}] {record.getMessage()}", 1)
        sql = getattr(record, "sql", None)
        if sql:
            line += f" | SQL: {sql}"
        return line


class SqlJSONFormatter(logging.Formatter):
    """JSON formatter for SQL logs."""

    def __init__(self, sort_keys: bool = True) -> None:
        super().__init__()
        self.sort_keys = sort_keys

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        operation = getattr(record, "operation", None)
        if operation:
            log_entry["operation"] = operation
        sql = getattr(record, "sql", None)
        if sql:
            log_entry["sql"] = sql
        params = getattr(record, "params", None)
        if params is not None:
            log_entry["params"] = params

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_entry, sort_keys=self.sort_keys, default=str)


@contextmanager
def operation_context(operation: str) -> Generator[str, None, None]:
    """Context manager scoping the operation name attached to log records."""
    token = operation_var.set(operation)
    try:
        yield operation
    finally:
        operation_var.reset(token)


def get_operation() -> str | None:
    """Get the operation name of the current context."""
    return operation_var.get()


def configure_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """
    Install handlers on the ``niorm`` logger.

    The root logger is never touched. A disabled configuration installs a
    NullHandler and stops propagation so the library stays silent.

    Args:
        config: Logging configuration (defaults to the environment)

    Returns:
        The configured ``niorm`` logger
    """
    config = config or LoggingConfig.from_env()
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    for existing in logger.handlers[:]:
        logger.removeHandler(existing)
        existing.close()

    if not config.enabled:
        logger.addHandler(logging.NullHandler())
        logger.propagate = False
        return logger

    formatter: logging.Formatter
    if config.format_type == "json":
        formatter = SqlJSONFormatter()
    else:
        formatter = SqlTextFormatter()

    handler: logging.Handler
    if config.log_file:
        handler = SafeFileHandler(config.log_file)
    else:
        handler = SafeStreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(SqlLogFilter(config.mask_parameters))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, config.level.upper(), logging.WARNING))
    logger.propagate = False

    logger.debug(f"Logging configured: level={config.level}, format={config.format_type}")
    return logger
