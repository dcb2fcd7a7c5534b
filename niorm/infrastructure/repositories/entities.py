"""
Entity Collection - CRUD engine for one entity type.

Generates SELECT/INSERT/UPDATE/DELETE statements from entity metadata, binds
every value through a ParameterBuilder and maps result rows back into typed
records. Statements go to a SqlExecutor; the collection never touches a
driver.

Usage:
    people = EntityCollection(Person, executor)
    people.add(Person(Name="A", Age=1))
    bob = people.find(5)
    adults = people.where(lambda p: (p.Age == 18) | (p.Name == "Bob"))

Raw SQL entry points (``first_or_default(where)``, ``list(where)``,
``query(sql)``, ``execute(sql)``) log a security warning and are screened by
the injection guard; prefer the parameterized forms.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from niorm.application.interfaces.executor import SqlExecutor, resolve_dialect
from niorm.domain.dialect import SqlDialect
from niorm.domain.exceptions import (
    MappingError,
    NiORMError,
    SchemaError,
    ValidationError,
)
from niorm.domain.expressions import Node, trace_predicate, translate
from niorm.domain.schema import FieldKind, TableMetadata, describe_schema
from niorm.domain.values import from_wire_value, map_row
from niorm.infrastructure.database.parameters import ParameterBuilder, SqlStatement
from niorm.infrastructure.monitoring.logging import operation_context
from niorm.infrastructure.security.injection_guard import SqlInjectionGuard

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()
_COMMAND_VERBS = ("INSERT", "UPDATE", "DELETE")


class CollectionState(Enum):
    """Lifecycle of an EntityCollection."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    BROKEN = "broken"


class EntityCollection(Generic[T]):
    """
    Typed CRUD access to the table behind one entity type.

    Metadata is loaded once at construction. A collection whose metadata
    failed to load is BROKEN and rejects every call.
    """

    def __init__(
        self,
        entity_type: type[T],
        executor: SqlExecutor,
        dialect: SqlDialect | None = None,
        guard_raw_sql: bool = True,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Initialize the collection and load the entity metadata.

        Args:
            entity_type: Dataclass declared with ``@table``
            executor: Execution collaborator
            dialect: SQL dialect of the target database; defaults to the
                executor's declared dialect, else SQL Server
            guard_raw_sql: Refuse HIGH-risk raw SQL
            clock: Source of the timestamps stamped on Updatable entities

        Raises:
            ValidationError: If no executor is given or the dialect does not
                match the executor
            SchemaError: If the entity metadata cannot be loaded
        """
        if executor is None:
            raise ValidationError("Executor cannot be None")

        self.entity_type = entity_type
        self.executor = executor
        self.dialect = resolve_dialect(executor, dialect)
        self.guard_raw_sql = guard_raw_sql
        self._clock = clock
        self._state = CollectionState.UNINITIALIZED
        self._failure: SchemaError | None = None
        self._metadata: TableMetadata | None = None

        try:
            self._metadata = describe_schema(entity_type)
        except SchemaError as e:
            self._state = CollectionState.BROKEN
            self._failure = e
            logger.error(f"Failed to initialize collection for {self.entity_name}: {e}")
            raise

        self._state = CollectionState.READY
        logger.debug(f"Collection for {self.entity_name} initialized ({self.table_name})")

    @property
    def state(self) -> CollectionState:
        return self._state

    @property
    def entity_name(self) -> str:
        return getattr(self.entity_type, "__name__", str(self.entity_type))

    @property
    def metadata(self) -> TableMetadata:
        self._ensure_ready()
        return self._metadata  # type: ignore[return-value]

    @property
    def table_name(self) -> str:
        return self.metadata.table_name

    # Reads

    def find(self, *keys: Any) -> T | None:
        """
        Fetch the record with the given primary key value(s).

        Args:
            *keys: One value per declared primary key (one or two keys)

        Returns:
            The record, or None when no row matches

        Raises:
            ValidationError: If the key count does not match the declared
                keys or a key value is missing
        """
        self._ensure_ready()
        with operation_context("find"):
            primary_keys = self.metadata.primary_keys
            if len(keys) not in (1, 2):
                raise ValidationError(f"find takes one or two key values, got {len(keys)}")
            if len(primary_keys) != len(keys):
                raise ValidationError(
                    f"Table {self.entity_name} must have exactly {len(keys)} primary key(s) "
                    f"for this find. Found {len(primary_keys)} primary keys."
                )

            conditions: dict[str, Any] = {}
            for descriptor, value in zip(primary_keys, keys):
                if value is None or (isinstance(value, str) and not value.strip()):
                    raise ValidationError("Primary key value cannot be null or empty")
                conditions[descriptor.name] = self._coerce_key(descriptor.name, value)

            builder = self._builder()
            where = builder.build_where_clause(conditions)
            statement = self._statement(builder, self.dialect.select_first(self.table_name, where))
            result = self._first(self._fetch(statement, "find"))

            if result is None:
                logger.debug(f"No {self.entity_name} found with key(s): {keys}")
            return result

    def first_or_default(self, where_clause: str | None = None) -> T | None:
        """
        Fetch the first row, optionally filtered by a raw WHERE fragment.

        The raw fragment is screened by the injection guard; prefer
        first_or_default_multiple.

        Raises:
            ValidationError: If the fragment is blank
            UnsafeSqlError: If the guard rates the fragment HIGH risk
        """
        self._ensure_ready()
        with operation_context("first_or_default"):
            if where_clause is None:
                sql = self.dialect.select_first(self.table_name)
                return self._first(self._fetch(SqlStatement(sql), "first_or_default"))

            self._check_raw(where_clause, "first_or_default", "WHERE clause")
            sql = self.dialect.select_first(self.table_name, f"WHERE {where_clause}")
            return self._first(self._fetch(SqlStatement(sql), "first_or_default"))

    def to_list(self, where_clause: str | None = None) -> list[T]:
        """
        Fetch every row, optionally filtered by a raw WHERE fragment.

        Raises:
            ValidationError: If the fragment is blank
            UnsafeSqlError: If the guard rates the fragment HIGH risk
        """
        self._ensure_ready()
        with operation_context("list"):
            if where_clause is None:
                return self._fetch(SqlStatement(self.dialect.select_all(self.table_name)), "list")

            self._check_raw(where_clause, "list", "WHERE clause")
            sql = self.dialect.select_all(self.table_name, f"WHERE {where_clause}")
            return self._fetch(SqlStatement(sql), "list")

    def list(self, where_clause: str | None = None) -> list[T]:
        """Alias of to_list."""
        return self.to_list(where_clause)

    def where(self, field_or_predicate: Any, value: Any = _MISSING) -> list[T]:
        """
        Fetch the rows matching a field value or a predicate.

        Two forms:
            where("Name", "Bob")
            where(lambda p: (p.Name == "Bob") & (p.Age == 3))

        The predicate may also be a prebuilt node. Constants of a predicate
        are bound as parameters.

        Raises:
            ValidationError: If the field is blank or unknown
            UnsupportedExpressionError: If the predicate uses an unsupported
                operation
        """
        if value is not _MISSING:
            if not isinstance(field_or_predicate, str) or not field_or_predicate.strip():
                raise ValidationError("Property name cannot be null or empty")
            return self.where_multiple({field_or_predicate: value})

        self._ensure_ready()
        with operation_context("where"):
            if isinstance(field_or_predicate, Node):
                tree = field_or_predicate
            elif callable(field_or_predicate):
                tree = trace_predicate(self.entity_type, field_or_predicate)
            else:
                raise ValidationError("where() needs a predicate, or a field name and a value")

            builder = self._builder()
            fragment = translate(tree, self.dialect, builder, self.metadata.fields)
            sql = self.dialect.select_all(self.table_name, f"WHERE {fragment}")
            return self._fetch(self._statement(builder, sql), "where")

    def where_multiple(self, conditions: Mapping[str, Any]) -> list[T]:
        """
        Fetch the rows whose fields equal all the given values.

        Raises:
            ValidationError: If there are no conditions or a field is unknown
        """
        self._ensure_ready()
        with operation_context("where_multiple"):
            self._check_conditions(conditions)
            builder = self._builder()
            where = builder.build_where_clause(conditions)
            sql = self.dialect.select_all(self.table_name, where)
            logger.debug(
                f"Executing where_multiple for {self.entity_name} "
                f"with {len(conditions)} conditions"
            )
            return self._fetch(self._statement(builder, sql), "where_multiple")

    def find_by_property(self, name: str, value: Any) -> list[T]:
        """Fetch the rows whose field ``name`` equals ``value``."""
        if not name or not name.strip():
            raise ValidationError("Property name cannot be null or empty")
        return self.where_multiple({name: value})

    def first_or_default_multiple(self, conditions: Mapping[str, Any]) -> T | None:
        """
        Fetch the first row whose fields equal all the given values.

        Raises:
            ValidationError: If there are no conditions or a field is unknown
        """
        self._ensure_ready()
        with operation_context("first_or_default_multiple"):
            self._check_conditions(conditions)
            builder = self._builder()
            where = builder.build_where_clause(conditions)
            sql = self.dialect.select_first(self.table_name, where)
            statement = self._statement(builder, sql)
            return self._first(self._fetch(statement, "first_or_default_multiple"))

    def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[T]:
        """
        Run a raw SELECT and map its rows to records.

        Raises:
            ValidationError: If the SQL is blank
            UnsafeSqlError: If the guard rates the SQL HIGH risk
        """
        self._ensure_ready()
        with operation_context("query"):
            self._check_raw(sql, "query", "SQL query")
            return self._fetch(SqlStatement(sql, dict(params or {})), "query")

    def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> int:
        """
        Run a raw command and return the rows it affected.

        One occurrence of the command's own leading INSERT, UPDATE or DELETE
        is not held against it by the guard; a second one, or anything else
        dangerous, still is.

        Raises:
            ValidationError: If the SQL is blank
            UnsafeSqlError: If the guard rates the SQL HIGH risk
        """
        self._ensure_ready()
        with operation_context("execute"):
            verb = sql.strip().split(None, 1)[0].upper() if sql and sql.strip() else ""
            allowed = (verb,) if verb in _COMMAND_VERBS else ()
            self._check_raw(sql, "execute", "SQL command", allowed)
            return self._execute(SqlStatement(sql, dict(params or {})), "execute")

    # Writes

    def add(self, entity: T) -> int:
        """
        Insert a record.

        Auto-increment keys are left to the database; GUID keys get a fresh
        value first. Updatable entities get both timestamps.

        Returns:
            Rows affected

        Raises:
            ValidationError: If the entity is missing, of another type or a view
        """
        self._ensure_ready()
        with operation_context("add"):
            statement = self._insert_statement(entity, returning=False)
            rows_affected = self._execute(statement, "add")
            logger.info(f"Added {self.entity_name} entity, {rows_affected} rows affected")
            return rows_affected

    def add_return(self, entity: T) -> T | None:
        """
        Insert a record and return the row as stored, generated key included.

        Raises:
            ValidationError: If the entity is missing, of another type or a view
        """
        self._ensure_ready()
        with operation_context("add_return"):
            statement = self._insert_statement(entity, returning=True)
            return self._first(self._fetch(statement, "add_return"))

    def edit(self, entity: T) -> int:
        """
        Update a record by primary key.

        Every field except system-assigned keys is written. Updatable
        entities get a fresh update timestamp.

        Returns:
            Rows affected

        Raises:
            ValidationError: If the entity is missing, a view or has no keys
        """
        self._ensure_ready()
        with operation_context("edit"):
            self._check_entity(entity, "updated")
            metadata = self.metadata
            if not metadata.primary_keys:
                raise ValidationError(
                    f"Entity {self.entity_name} must have at least one primary key to be updated",
                    entity,
                )

            if metadata.has_timestamps:
                metadata.set_value(entity, metadata.updated_field, self._clock())

            system_keys = {pk.name for pk in metadata.primary_keys if pk.is_system_assigned}
            fields = [name for name in metadata.fields if name not in system_keys]

            builder = self._builder()
            set_clause = builder.build_update_set_clause(fields, entity, metadata)
            where = builder.build_primary_key_where_clause(
                metadata.primary_key_names, entity, metadata
            )
            statement = self._statement(builder, f"UPDATE {self.table_name} {set_clause} {where}")

            rows_affected = self._execute(statement, "edit")
            logger.info(f"Updated {self.entity_name} entity, {rows_affected} rows affected")
            return rows_affected

    def remove(self, entity: T) -> int:
        """
        Delete a record by primary key.

        Returns:
            Rows affected

        Raises:
            ValidationError: If the entity is missing or the type has no keys
        """
        self._ensure_ready()
        with operation_context("remove"):
            if entity is None:
                raise ValidationError("Entity cannot be None")
            metadata = self.metadata
            if not metadata.primary_keys:
                raise ValidationError(
                    f"Entity {self.entity_name} must have at least one primary key to be removed",
                    entity,
                )

            builder = self._builder()
            where = builder.build_primary_key_where_clause(
                metadata.primary_key_names, entity, metadata
            )
            statement = self._statement(builder, f"DELETE FROM {self.table_name} {where}")

            rows_affected = self._execute(statement, "remove")
            logger.info(f"Removed {self.entity_name} entity, {rows_affected} rows affected")
            return rows_affected

    # Internals

    def _ensure_ready(self) -> None:
        if self._state is not CollectionState.READY:
            raise SchemaError(
                f"Collection for {self.entity_name} is unusable: {self._failure}", self._failure
            )

    def _builder(self) -> ParameterBuilder:
        return ParameterBuilder(self.dialect)

    def _statement(self, builder: ParameterBuilder, sql: str) -> SqlStatement:
        return builder.apply_parameters(SqlStatement(sql))

    def _insert_statement(self, entity: T, returning: bool) -> SqlStatement:
        self._check_entity(entity, "added")
        metadata = self.metadata

        if metadata.has_timestamps:
            now = self._clock()
            metadata.set_value(entity, metadata.created_field, now)
            metadata.set_value(entity, metadata.updated_field, now)

        columns = list(metadata.fields)
        for pk in metadata.primary_keys:
            if pk.is_guid:
                metadata.set_value(entity, pk.name, self._new_guid(pk.name))
                logger.debug(f"Generated GUID for primary key {pk.name}")
            elif pk.is_auto_increment:
                columns.remove(pk.name)

        builder = self._builder()
        values_clause = builder.build_insert_values_clause(columns, entity, metadata)
        sql = self.dialect.insert(self.table_name, columns, values_clause, returning=returning)
        return self._statement(builder, sql)

    def _new_guid(self, name: str) -> Any:
        value = uuid.uuid4()
        if self.metadata.field_type(name).kind is FieldKind.GUID:
            return value
        return str(value)

    def _check_entity(self, entity: T, verb: str) -> None:
        if entity is None:
            raise ValidationError("Entity cannot be None")
        if not isinstance(entity, self.entity_type):
            raise ValidationError(
                f"Expected {self.entity_name}, got {type(entity).__name__}", entity
            )
        if self.metadata.is_view:
            raise ValidationError(
                f"Entity type {self.entity_name} cannot be {verb} because it's a view", entity
            )

    def _check_conditions(self, conditions: Mapping[str, Any]) -> None:
        if not conditions:
            raise ValidationError("Conditions cannot be null or empty")
        for name in conditions:
            if not isinstance(name, str) or not name.strip():
                raise ValidationError("Property name cannot be null or empty")
            if not self.metadata.has_field(name):
                raise ValidationError(f"Unknown field '{name}' on {self.entity_name}")

    def _coerce_key(self, name: str, value: Any) -> Any:
        try:
            return from_wire_value(value, self.metadata.field_type(name), name)
        except MappingError as e:
            raise ValidationError(f"Invalid value for primary key {name}: {value!r}") from e

    def _check_raw(
        self, sql: str, operation: str, what: str, allowed_keywords: tuple[str, ...] = ()
    ) -> None:
        if not sql or not sql.strip():
            raise ValidationError(f"{what} cannot be null or empty")

        logger.warning(
            f"Using raw SQL in {operation} for {self.entity_name}",
            extra={"operation": operation, "sql": sql},
        )
        if self.guard_raw_sql:
            SqlInjectionGuard.ensure_safe(sql, allowed_keywords)

    def _fetch(self, statement: SqlStatement, operation: str) -> list[T]:
        rows = self._call(self.executor.query, statement, operation)
        return [map_row(self.metadata, row) for row in rows]

    def _execute(self, statement: SqlStatement, operation: str) -> int:
        return self._call(self.executor.execute, statement, operation)

    def _call(self, method: Callable[..., Any], statement: SqlStatement, operation: str) -> Any:
        logger.debug(
            f"Executing {operation} for {self.entity_name}",
            extra={
                "operation": operation,
                "sql": statement.sql,
                "params": dict(statement.params),
            },
        )
        try:
            return method(statement.sql, statement.params)
        except NiORMError:
            raise
        except Exception as e:
            error = f"Unexpected error during {operation} for {self.entity_name}: {e}"
            logger.error(error, extra={"operation": operation, "sql": statement.sql})
            raise NiORMError(error, e, statement.sql, operation) from e

    @staticmethod
    def _first(records: list[T]) -> T | None:
        return records[0] if records else None

    def __repr__(self) -> str:
        table_name = self._metadata.table_name if self._metadata else None
        return (
            f"EntityCollection({self.entity_name}, table={table_name}, state={self._state.value})"
        )
