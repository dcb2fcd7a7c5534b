"""
Parameter Builder - Secure parameterized statement construction.

Every value that reaches a generated statement goes through a ParameterBuilder:
the SQL text only ever holds placeholders, the values travel separately.

Usage Examples:
    builder = ParameterBuilder()
    where = builder.build_where_clause({"Name": "Bob", "Age": 3})
    # where == "WHERE [Name] = @p1 AND [Age] = @p2"

    statement = SqlStatement(f"SELECT * FROM People {where}")
    builder.apply_parameters(statement)
    executor.query(statement.sql, statement.params)

A builder is scoped to one statement and is not thread-safe.
"""

import logging
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from niorm.domain.dialect import SQLSERVER, SqlDialect
from niorm.domain.exceptions import DuplicateParameterError, ValidationError
from niorm.domain.schema import TableMetadata, describe_schema
from niorm.domain.values import to_parameter_value

logger = logging.getLogger(__name__)

NVARCHAR_MAX_LENGTH = 4000
NVARCHAR_MAX = -1

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


class DbType(Enum):
    """Database type attached to a bound parameter."""

    VARIANT = "variant"
    BIT = "bit"
    INT = "int"
    BIGINT = "bigint"
    FLOAT = "float"
    DECIMAL = "decimal"
    DATETIME2 = "datetime2"
    DATE = "date"
    UNIQUEIDENTIFIER = "uniqueidentifier"
    NCHAR = "nchar"
    NVARCHAR = "nvarchar"


@dataclass(frozen=True)
class BoundParameter:
    """One named value bound to a statement."""

    name: str
    value: Any
    db_type: DbType
    size: int | None = None


@dataclass
class SqlStatement:
    """SQL text plus the parameter mapping bound to it."""

    sql: str
    params: MutableMapping[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"SqlStatement(sql={self.sql!r}, params={list(self.params)!r})"


def infer_db_type(value: Any) -> tuple[DbType, int | None]:
    """
    Infer the database type of a value.

    Args:
        value: Value about to be bound

    Returns:
        Tuple of (db_type, size); size is None where the type has no length
    """
    if value is None:
        return DbType.VARIANT, None
    if isinstance(value, bool):
        return DbType.BIT, None
    if isinstance(value, Enum):
        return DbType.INT, None
    if isinstance(value, int):
        if _INT32_MIN <= value <= _INT32_MAX:
            return DbType.INT, None
        return DbType.BIGINT, None
    if isinstance(value, float):
        return DbType.FLOAT, None
    if isinstance(value, Decimal):
        return DbType.DECIMAL, None
    if isinstance(value, datetime):
        return DbType.DATETIME2, None
    if isinstance(value, date):
        return DbType.DATE, None
    if isinstance(value, UUID):
        return DbType.UNIQUEIDENTIFIER, None
    if isinstance(value, str):
        if len(value) == 1:
            return DbType.NCHAR, 1
        size = NVARCHAR_MAX if len(value) > NVARCHAR_MAX_LENGTH else NVARCHAR_MAX_LENGTH
        return DbType.NVARCHAR, size
    return DbType.VARIANT, None


class ParameterBuilder:
    """
    Accumulates bound parameters for a single statement.

    Generated names are ``p1, p2, ...`` and never repeat within one builder;
    placeholders are rendered by the dialect (``@p1`` or ``%(p1)s``). Column
    names are quoted by the dialect and must come from entity metadata, never
    from user input.
    """

    def __init__(self, dialect: SqlDialect = SQLSERVER):
        self.dialect = dialect
        self._parameters: list[BoundParameter] = []
        self._counter = 0

    @property
    def parameters(self) -> Sequence[BoundParameter]:
        """Read-only view of the bound parameters, in binding order."""
        return tuple(self._parameters)

    def add_parameter(self, value: Any) -> str:
        """
        Bind a value under a generated name.

        Args:
            value: Value to bind

        Returns:
            Placeholder to embed in the SQL text
        """
        self._counter += 1
        name = f"p{self._counter}"
        while self._find(name) is not None:
            self._counter += 1
            name = f"p{self._counter}"
        return self._bind(name, value)

    def add_named_parameter(self, name: str, value: Any) -> str:
        """
        Bind a value under a caller-chosen name.

        Args:
            name: Parameter name, with or without a leading ``@``
            value: Value to bind

        Returns:
            Placeholder to embed in the SQL text

        Raises:
            ValidationError: If the name is blank
            DuplicateParameterError: If the name is already bound (case-insensitive)
        """
        if not name or not name.strip():
            raise ValidationError("Parameter name cannot be null or empty")

        bare_name = name.strip().removeprefix("@")
        if not bare_name:
            raise ValidationError("Parameter name cannot be null or empty")
        if self._find(bare_name) is not None:
            raise DuplicateParameterError(f"@{bare_name}")
        return self._bind(bare_name, value)

    def build_where_clause(self, conditions: Mapping[str, Any]) -> str:
        """
        Build ``WHERE [f1] = @p1 AND [f2] = @p2`` from column/value pairs.

        Returns:
            The clause, or an empty string when there are no conditions
        """
        if not conditions:
            return ""
        parts = [
            f"{self.dialect.quote(column)} = {self.add_parameter(value)}"
            for column, value in conditions.items()
        ]
        return f"WHERE {' AND '.join(parts)}"

    def build_primary_key_where_clause(
        self, primary_keys: Sequence[str], entity: Any, metadata: TableMetadata | None = None
    ) -> str:
        """
        Build the WHERE clause matching an entity's primary key values.

        Raises:
            ValidationError: If no primary keys are given
        """
        if not primary_keys:
            raise ValidationError("Primary keys cannot be null or empty", entity)

        metadata = metadata or describe_schema(type(entity))
        parts = []
        for key in primary_keys:
            placeholder = self.add_parameter(metadata.get_value(entity, key))
            parts.append(f"{self.dialect.quote(key)} = {placeholder}")
        return f"WHERE {' AND '.join(parts)}"

    def build_insert_values_clause(
        self, fields: Sequence[str], entity: Any, metadata: TableMetadata | None = None
    ) -> str:
        """
        Build ``VALUES (@p1, @p2)`` from an entity's field values.

        Raises:
            ValidationError: If no fields are given
        """
        if not fields:
            raise ValidationError("Fields cannot be null or empty", entity)

        metadata = metadata or describe_schema(type(entity))
        placeholders = [self.add_parameter(metadata.get_value(entity, name)) for name in fields]
        return f"VALUES ({', '.join(placeholders)})"

    def build_update_set_clause(
        self, fields: Sequence[str], entity: Any, metadata: TableMetadata | None = None
    ) -> str:
        """
        Build ``SET [f1] = @p1, [f2] = @p2`` from an entity's field values.

        Raises:
            ValidationError: If no fields are given
        """
        if not fields:
            raise ValidationError("Fields cannot be null or empty", entity)

        metadata = metadata or describe_schema(type(entity))
        parts = []
        for name in fields:
            placeholder = self.add_parameter(metadata.get_value(entity, name))
            parts.append(f"{self.dialect.quote(name)} = {placeholder}")
        return f"SET {', '.join(parts)}"

    def as_mapping(self) -> dict[str, Any]:
        """Bound values keyed by bare parameter name."""
        return {parameter.name: parameter.value for parameter in self._parameters}

    def apply_parameters(self, statement: SqlStatement) -> SqlStatement:
        """
        Bind every parameter to a statement, replacing any earlier bindings.

        Applying twice leaves the statement with exactly one set of bindings.

        Raises:
            ValidationError: If no statement is given
        """
        if statement is None:
            raise ValidationError("Statement cannot be None")

        statement.params.clear()
        statement.params.update(self.as_mapping())
        logger.debug(f"Bound {len(self._parameters)} parameters to: {statement.sql}")
        return statement

    def clear(self) -> None:
        """Drop all parameters and restart numbering."""
        self._parameters.clear()
        self._counter = 0

    def get_debug_query(self, sql: str) -> str:
        """
        Substitute bound values into the SQL text.

        For logging only: the output is not escaped and must never be executed.
        """
        debug_sql = sql
        # Longest names first so p1 never clobbers p10.
        for parameter in sorted(self._parameters, key=lambda p: len(p.name), reverse=True):
            value = parameter.value
            if value is None:
                rendered = "NULL"
            elif isinstance(value, str):
                rendered = f"'{value}'"
            else:
                rendered = str(value)
            debug_sql = debug_sql.replace(self.dialect.placeholder(parameter.name), rendered)
        return debug_sql

    def __len__(self) -> int:
        return len(self._parameters)

    def _find(self, name: str) -> BoundParameter | None:
        lowered = name.lower()
        for parameter in self._parameters:
            if parameter.name.lower() == lowered:
                return parameter
        return None

    def _bind(self, name: str, value: Any) -> str:
        db_type, size = infer_db_type(value)
        self._parameters.append(BoundParameter(name, to_parameter_value(value), db_type, size))
        return self.dialect.placeholder(name)
