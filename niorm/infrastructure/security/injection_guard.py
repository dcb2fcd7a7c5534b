"""
SQL Injection Guard - advisory screening of raw SQL text.

Raw SQL paths of the entity collection run every statement through
``SqlInjectionGuard.validate_sql`` before it is sent. The guard is defense in
depth only: it never replaces parameterized statements, and sanitize_input is
best effort, not a security boundary.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import IntEnum

from niorm.domain.exceptions import UnsafeSqlError

logger = logging.getLogger(__name__)


class RiskLevel(IntEnum):
    """Ordered risk levels of a SQL string."""

    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3


@dataclass
class SqlValidationResult:
    """Outcome of validating one SQL string."""

    risk_level: RiskLevel = RiskLevel.NONE
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """True unless the risk is HIGH."""
        return self.risk_level != RiskLevel.HIGH

    @property
    def summary(self) -> str:
        return f"Risk Level: {self.risk_level.name.title()}, Warnings: {len(self.warnings)}"

    def raise_to(self, level: RiskLevel, warning: str) -> None:
        """Record a warning and raise the risk to at least ``level``."""
        self.warnings.append(warning)
        if level > self.risk_level:
            self.risk_level = level


class SqlInjectionGuard:
    """
    Pattern-based SQL injection screening.

    Risk only ever increases while a statement is scanned, so adding text to a
    statement can never make it look safer.
    """

    # Matched as substrings of the upper-cased text
    DANGEROUS_KEYWORDS = [
        "DROP",
        "DELETE",
        "TRUNCATE",
        "ALTER",
        "CREATE",
        "INSERT",
        "UPDATE",
        "EXEC",
        "EXECUTE",
        "SP_",
        "XP_",
        "BULK",
        "OPENROWSET",
        "OPENDATASOURCE",
        "SHUTDOWN",
        "DBCC",
        "BACKUP",
        "RESTORE",
    ]

    SUSPICIOUS_PATTERNS = [
        r"'[^']*;[^']*'",  # semicolon inside a string
        r"--",  # line comment
        r"/\*.*?\*/",  # block comment
        r"\bunion\b.*\bselect\b",
        r"'\s*or\s*'",
        r"'\s*and\s*'",
        r"'.*=.*'",
        r"'.*<.*'",
        r"'.*>.*'",
        r"\bselect\b.*\bfrom\b",  # nested select
        r"'.*\+.*'",  # concatenation
        r"char\s*\(",
        r"ascii\s*\(",
        r"cast\s*\(",
        r"convert\s*\(",
        r"substring\s*\(",
        r"waitfor\s+delay",
        r"benchmark\s*\(",
        r"sleep\s*\(",
        r"pg_sleep\s*\(",
        r"0x[0-9a-fA-F]+",
        r"'.*\|\|.*'",
        r"'.*\+\+.*'",
    ]

    TAUTOLOGY_PATTERN = r"'\s*(or|and)\s+.*=.*"
    # String literals are matched first so brackets inside them stay literal text
    QUOTED_TOKEN_PATTERN = r"'[^']*'|\[[^\]]*\]|\"[^\"]*\""
    COMMENT_AFTER_QUOTE_PATTERN = r"'.*--"

    @classmethod
    def validate_sql(
        cls, sql: str | None, allowed_keywords: Iterable[str] = ()
    ) -> SqlValidationResult:
        """
        Score a SQL string for injection risk.

        Keywords are looked for outside bracketed or double-quoted identifiers,
        so a column such as [CreatedDateTime] does not read as CREATE. Brackets
        and double quotes inside a string literal are ordinary characters.

        Args:
            sql: SQL text to validate
            allowed_keywords: Dangerous keywords the caller expects, e.g. the
                leading UPDATE of a command it asked to run

        Returns:
            SqlValidationResult with the risk level and one warning per finding
        """
        result = SqlValidationResult()
        if not sql or not sql.strip():
            return result

        allowed = {keyword.upper() for keyword in allowed_keywords}
        normalized = cls._strip_quoted_identifiers(sql).upper()
        for keyword in cls.DANGEROUS_KEYWORDS:
            # An allowed keyword excuses exactly one occurrence
            if normalized.count(keyword) > (1 if keyword in allowed else 0):
                result.raise_to(RiskLevel.HIGH, f"Dangerous keyword detected: {keyword}")

        for pattern in cls.SUSPICIOUS_PATTERNS:
            if re.search(pattern, sql, re.IGNORECASE | re.DOTALL):
                result.raise_to(RiskLevel.MEDIUM, f"Suspicious pattern detected: {pattern}")

        if cls._has_multiple_statements(sql):
            result.raise_to(
                RiskLevel.HIGH, "Multiple SQL statements detected (separated by semicolons)"
            )

        if sql.count("'") % 2 != 0:
            result.raise_to(RiskLevel.MEDIUM, "Unbalanced single quotes detected")

        if re.search(cls.TAUTOLOGY_PATTERN, sql, re.IGNORECASE):
            result.raise_to(
                RiskLevel.HIGH, "Potential tautology injection detected (OR/AND with equals)"
            )

        if re.search(cls.COMMENT_AFTER_QUOTE_PATTERN, sql):
            result.raise_to(RiskLevel.HIGH, "Potential comment-based injection detected")

        if result.warnings:
            logger.debug(f"SQL validation: {result.summary} | Query: {sql[:100]}...")
        return result

    @classmethod
    def ensure_safe(
        cls, sql: str, allowed_keywords: Iterable[str] = ()
    ) -> SqlValidationResult:
        """
        Validate SQL and refuse it when the risk is HIGH.

        Returns:
            The validation result of SQL that passed

        Raises:
            UnsafeSqlError: If the risk is HIGH
        """
        result = cls.validate_sql(sql, allowed_keywords)
        if not result.is_valid:
            logger.error(f"Refused raw SQL: {result.summary} | Query: {sql[:100]}...")
            raise UnsafeSqlError(
                f"Raw SQL refused by injection guard ({result.summary}): "
                f"{'; '.join(result.warnings)}",
                result,
            )
        return result

    @classmethod
    def sanitize_input(cls, value: str | None) -> str | None:
        """
        Escape quotes and strip statement separators, comment markers and
        procedure prefixes.

        Best effort only. Use parameterized statements instead.
        """
        if not value:
            return value

        return (
            value.replace("'", "''")
            .replace(";", "")
            .replace("--", "")
            .replace("/*", "")
            .replace("*/", "")
            .replace("xp_", "")
            .replace("sp_", "")
        )

    @classmethod
    def is_safe_select_statement(cls, sql: str | None) -> bool:
        """
        Check that a statement looks like a single, plain SELECT.

        Returns:
            True if it starts with SELECT and carries no dangerous keyword,
            second statement, comment or tautology
        """
        if not sql or not sql.strip():
            return False

        normalized = sql.strip().upper()
        if not normalized.startswith("SELECT"):
            return False
        unquoted = cls._strip_quoted_identifiers(normalized)
        if any(keyword in unquoted for keyword in cls.DANGEROUS_KEYWORDS):
            return False
        if cls._has_multiple_statements(sql):
            return False
        if "--" in normalized or "/*" in normalized:
            return False
        return re.search(cls.TAUTOLOGY_PATTERN, sql, re.IGNORECASE) is None

    @classmethod
    def _strip_quoted_identifiers(cls, sql: str) -> str:
        """Blank out [..] and ".." identifiers, keeping string literals intact."""
        return re.sub(
            cls.QUOTED_TOKEN_PATTERN,
            lambda match: match.group(0) if match.group(0).startswith("'") else " ",
            sql,
        )

    @staticmethod
    def _has_multiple_statements(sql: str) -> bool:
        # One trailing terminator is allowed; any other semicolon separates statements.
        body = sql.strip()
        if body.endswith(";"):
            body = body[:-1]
        return ";" in body


def validate_sql(sql: str | None, allowed_keywords: Iterable[str] = ()) -> SqlValidationResult:
    return SqlInjectionGuard.validate_sql(sql, allowed_keywords)


def sanitize_input(value: str | None) -> str | None:
    return SqlInjectionGuard.sanitize_input(value)


def is_safe_select_statement(sql: str | None) -> bool:
    return SqlInjectionGuard.is_safe_select_statement(sql)
