"""
Data Core - entry point tying an executor to entity collections.

    core = DataCore(executor)
    people = core.create_entity(Person)
    names = core.sql_raw(str, "SELECT Name FROM People")
"""

import dataclasses
import logging
from collections.abc import Mapping
from typing import Any, TypeVar

from niorm.application.interfaces.executor import SqlExecutor, resolve_dialect
from niorm.domain.dialect import SqlDialect
from niorm.domain.exceptions import NiORMError, SchemaError, ValidationError
from niorm.domain.schema import FieldType, describe_record
from niorm.domain.values import from_wire_value, map_row
from niorm.infrastructure.config import OrmConfig
from niorm.infrastructure.monitoring.logging import (
    LoggingConfig,
    configure_logging,
    operation_context,
)
from niorm.infrastructure.repositories.entities import EntityCollection
from niorm.infrastructure.security.injection_guard import SqlInjectionGuard

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DataCore:
    """
    Factory of entity collections sharing one executor and dialect.

    Collections are created once per entity type and reused.
    """

    def __init__(
        self,
        executor: SqlExecutor,
        dialect: SqlDialect | None = None,
        guard_raw_sql: bool = True,
        logging_config: LoggingConfig | None = None,
    ) -> None:
        """
        Initialize the data core.

        Args:
            executor: Execution collaborator shared by every collection
            dialect: SQL dialect of the target database; defaults to the
                executor's declared dialect, else SQL Server
            guard_raw_sql: Refuse HIGH-risk raw SQL
            logging_config: When given, configure the ``niorm`` logger with it

        Raises:
            ValidationError: If no executor is given or the dialect does not
                match the executor
        """
        if executor is None:
            raise ValidationError("Executor cannot be None")

        self.executor = executor
        self.dialect = resolve_dialect(executor, dialect)
        self.guard_raw_sql = guard_raw_sql
        self._collections: dict[type, EntityCollection[Any]] = {}

        if logging_config is not None:
            configure_logging(logging_config)

    @classmethod
    def from_config(cls, executor: SqlExecutor, config: OrmConfig | None = None) -> "DataCore":
        """Create a data core from engine settings (defaults to the environment)."""
        config = config or OrmConfig.from_env()
        return cls(executor, config.dialect, config.guard_raw_sql, config.logging)

    def create_entity(self, entity_type: type[T]) -> EntityCollection[T]:
        """
        Get the collection of an entity type.

        Raises:
            SchemaError: If the entity type is not a valid entity declaration
        """
        collection = self._collections.get(entity_type)
        if collection is None:
            collection = EntityCollection(
                entity_type, self.executor, self.dialect, self.guard_raw_sql
            )
            self._collections[entity_type] = collection
        return collection

    def sql_raw(
        self, result_type: type[T], sql: str, params: Mapping[str, Any] | None = None
    ) -> list[T]:
        """
        Run a raw SELECT and project its rows.

        ``result_type`` decides the projection:
        - a dataclass: each row mapped by column name (no table declaration needed)
        - a scalar type (int, str, datetime, an Enum...): the first column of each row
        - dict: the rows as plain dictionaries

        Raises:
            ValidationError: If the SQL is blank
            UnsafeSqlError: If the guard rates the SQL HIGH risk
            SchemaError: If the result type cannot be projected
            MappingError: If a value cannot be converted
        """
        with operation_context("sql_raw"):
            if not sql or not sql.strip():
                raise ValidationError("SQL query cannot be null or empty")

            logger.warning(
                f"Executing raw SQL projection to {getattr(result_type, '__name__', result_type)}",
                extra={"operation": "sql_raw", "sql": sql},
            )
            if self.guard_raw_sql:
                SqlInjectionGuard.ensure_safe(sql)

            project = self._projection(result_type)
            try:
                rows = self.executor.query(sql, dict(params or {}))
            except NiORMError:
                raise
            except Exception as e:
                error = f"Unexpected error during sql_raw: {e}"
                logger.error(error, extra={"operation": "sql_raw", "sql": sql})
                raise NiORMError(error, e, sql, "sql_raw") from e
            return [project(row) for row in rows]

    @staticmethod
    def _projection(result_type: type) -> Any:
        if result_type is dict:
            return dict

        if dataclasses.is_dataclass(result_type):
            metadata = describe_record(result_type)
            return lambda row: map_row(metadata, row)

        try:
            field_type = dataclasses.replace(FieldType.from_annotation(result_type), nullable=True)
        except SchemaError as e:
            raise SchemaError(f"Cannot project raw SQL rows to {result_type!r}") from e

        def first_column(row: Mapping[str, Any]) -> Any:
            raw = next(iter(row.values()), None)
            return from_wire_value(raw, field_type, "first column")

        return first_column
