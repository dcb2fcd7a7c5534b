"""
SQL dialects.

A dialect owns the few pieces of syntax that differ between engines: identifier
quoting, placeholder style, the single-row SELECT form, returning the inserted
row and the current-timestamp function. SQL Server is the default.
"""

from dataclasses import dataclass
from enum import Enum


class ParameterStyle(str, Enum):
    """Placeholder style used in generated SQL."""

    NAMED_AT = "named_at"  # @p1
    PYFORMAT = "pyformat"  # %(p1)s


@dataclass(frozen=True)
class SqlDialect:
    name: str
    parameter_style: ParameterStyle
    quote_open: str
    quote_close: str
    current_timestamp: str
    top_one: bool
    returning_clause: str

    def quote(self, identifier: str) -> str:
        """Quote an identifier (a column name) for this dialect."""
        return f"{self.quote_open}{identifier}{self.quote_close}"

    def placeholder(self, name: str) -> str:
        """Render the placeholder for a bare parameter name (``p1``)."""
        if self.parameter_style is ParameterStyle.PYFORMAT:
            return f"%({name})s"
        return f"@{name}"

    def select_first(self, table_name: str, where: str = "") -> str:
        """SELECT statement returning at most one row."""
        if self.top_one:
            sql = f"SELECT TOP(1) * FROM {table_name}"
            return f"{sql} {where}" if where else sql
        sql = f"SELECT * FROM {table_name}"
        if where:
            sql = f"{sql} {where}"
        return f"{sql} LIMIT 1"

    def select_all(self, table_name: str, where: str = "") -> str:
        sql = f"SELECT * FROM {table_name}"
        return f"{sql} {where}" if where else sql

    def insert(
        self, table_name: str, columns: list[str], values_clause: str, returning: bool = False
    ) -> str:
        """
        INSERT statement over the given columns.

        Args:
            table_name: Target table
            columns: Column names in insert order
            values_clause: ``VALUES (...)`` fragment from the parameter builder
            returning: Ask the engine to return the inserted row
        """
        column_list = ", ".join(self.quote(c) for c in columns)
        if not returning:
            return f"INSERT INTO {table_name} ({column_list}) {values_clause}"
        if self.top_one:
            return (
                f"INSERT INTO {table_name} ({column_list}) {self.returning_clause} {values_clause}"
            )
        return f"INSERT INTO {table_name} ({column_list}) {values_clause} {self.returning_clause}"


SQLSERVER = SqlDialect(
    name="sqlserver",
    parameter_style=ParameterStyle.NAMED_AT,
    quote_open="[",
    quote_close="]",
    current_timestamp="GETDATE()",
    top_one=True,
    returning_clause="OUTPUT inserted.*",
)

POSTGRESQL = SqlDialect(
    name="postgresql",
    parameter_style=ParameterStyle.PYFORMAT,
    quote_open='"',
    quote_close='"',
    current_timestamp="CURRENT_TIMESTAMP",
    top_one=False,
    returning_clause="RETURNING *",
)

DIALECTS = {dialect.name: dialect for dialect in (SQLSERVER, POSTGRESQL)}


def get_dialect(name: str) -> SqlDialect:
    """
    Look up a dialect by name.

    Raises:
        ValueError: If the name is unknown
    """
    try:
        return DIALECTS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown SQL dialect: {name}") from None
