"""
Security module for NiORM.

Advisory SQL injection screening for the raw SQL entry points.
"""

from .injection_guard import (
    RiskLevel,
    SqlInjectionGuard,
    SqlValidationResult,
    is_safe_select_statement,
    sanitize_input,
    validate_sql,
)

__all__ = [
    "RiskLevel",
    "SqlInjectionGuard",
    "SqlValidationResult",
    "is_safe_select_statement",
    "sanitize_input",
    "validate_sql",
]
