"""
Monitoring module for NiORM.
"""

from .logging import (
    LoggingConfig,
    SqlJSONFormatter,
    SqlLogFilter,
    SqlTextFormatter,
    configure_logging,
    get_operation,
    operation_context,
)

__all__ = [
    "LoggingConfig",
    "SqlJSONFormatter",
    "SqlLogFilter",
    "SqlTextFormatter",
    "configure_logging",
    "get_operation",
    "operation_context",
]
