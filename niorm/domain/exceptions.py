"""
Exception taxonomy for NiORM.

Every error raised by the mapping engine derives from NiORMError so callers can
catch the specific kinds for actionable handling and NiORMError as a catch-all.
"""

from typing import Any


class NiORMError(Exception):
    """Base exception for all NiORM errors.

    Carries the SQL text and the operation name when the failure happened while
    talking to the execution collaborator.
    """

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        sql_query: str | None = None,
        operation_type: str | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.sql_query = sql_query
        self.operation_type = operation_type


class SchemaError(NiORMError):
    """Raised when an entity type lacks a required schema declaration."""

    pass


class ValidationError(NiORMError):
    """Raised when a caller violates an operation contract."""

    def __init__(self, message: str, entity: Any = None) -> None:
        super().__init__(message)
        self.entity = entity


class UnsafeSqlError(ValidationError):
    """Raised when raw SQL is refused by the injection guard."""

    def __init__(self, message: str, validation_result: Any = None) -> None:
        super().__init__(message)
        self.validation_result = validation_result


class ConnectionError(NiORMError):
    """Raised when the execution collaborator cannot be reached."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message, cause)


class MappingError(NiORMError):
    """Raised when a database value cannot be coerced into its typed field."""

    def __init__(self, field: str | None, raw_value: Any, reason: str | None = None) -> None:
        message = f"Cannot map value {raw_value!r} to field '{field}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)
        self.field = field
        self.raw_value = raw_value


class UnsupportedExpressionError(NiORMError):
    """Raised when predicate translation meets a node kind outside the supported set."""

    def __init__(self, node_kind: str, message: str | None = None) -> None:
        super().__init__(message or f"Operation {node_kind} is not supported.")
        self.node_kind = node_kind


class DuplicateParameterError(NiORMError):
    """Raised when a named parameter is registered twice on one builder."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Parameter {name} already exists")
        self.name = name
