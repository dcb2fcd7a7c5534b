"""
Entity schema declaration and metadata introspection.

Entities are plain dataclasses. The table they map to is declared with the
``@table`` decorator, key fields with ``primary_key()``, and two marker bases
describe the remaining capabilities:

    @table("People")
    @dataclass
    class Person:
        Id: int = primary_key()
        Name: str = ""
        Age: int = 0

``describe_schema`` turns such a class into a frozen TableMetadata once per type
and memoizes it. The metadata carries a field accessor table (getter and setter
closures per field) so that no per-call name lookup is needed afterwards.
"""

import dataclasses
import operator
import types
import typing
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from functools import cache
from typing import Any, ClassVar, TypeVar
from uuid import UUID

from niorm.domain.exceptions import MappingError, SchemaError

T = TypeVar("T")

PRIMARY_KEY_METADATA = "niorm.primary_key"
TABLE_NAME_ATTRIBUTE = "__table_name__"


class FieldKind(Enum):
    """Closed set of field kinds the mapper knows how to convert."""

    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    TEXT = "text"
    BOOLEAN = "boolean"
    DATETIME = "datetime"
    DATE = "date"
    ENUM = "enum"
    GUID = "guid"


# Order matters: bool before int, datetime before date.
_KIND_BY_TYPE: tuple[tuple[type, FieldKind], ...] = (
    (bool, FieldKind.BOOLEAN),
    (int, FieldKind.INTEGER),
    (float, FieldKind.FLOAT),
    (Decimal, FieldKind.DECIMAL),
    (str, FieldKind.TEXT),
    (datetime, FieldKind.DATETIME),
    (date, FieldKind.DATE),
    (UUID, FieldKind.GUID),
)


@dataclass(frozen=True)
class FieldType:
    """Semantic type of one entity field."""

    kind: FieldKind
    nullable: bool = False
    python_type: type | None = None

    @classmethod
    def from_annotation(cls, annotation: Any) -> "FieldType":
        """
        Resolve a field type from a type annotation.

        Args:
            annotation: Evaluated annotation (``int``, ``str | None``, an Enum class...)

        Returns:
            The resolved FieldType

        Raises:
            SchemaError: If the annotation has no supported field kind
        """
        nullable = False
        origin = typing.get_origin(annotation)
        if origin is typing.Union or origin is types.UnionType:
            args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
            if len(args) != 1:
                raise SchemaError(f"Unsupported union annotation: {annotation!r}")
            nullable = len(args) < len(typing.get_args(annotation))
            annotation = args[0]

        if isinstance(annotation, type):
            if issubclass(annotation, Enum):
                return cls(FieldKind.ENUM, nullable, annotation)
            for python_type, kind in _KIND_BY_TYPE:
                if issubclass(annotation, python_type):
                    return cls(kind, nullable, python_type)

        raise SchemaError(f"Unsupported field annotation: {annotation!r}")


@dataclass(frozen=True)
class PrimaryKeyDescriptor:
    """Key field name and how its value is generated."""

    name: str
    is_auto_increment: bool = True
    is_guid: bool = False

    @property
    def is_system_assigned(self) -> bool:
        """True when the caller never supplies the key value."""
        return self.is_auto_increment or self.is_guid


@dataclass(frozen=True)
class FieldAccessor:
    name: str
    field_type: FieldType
    getter: Callable[[Any], Any]
    setter: Callable[[Any, Any], None]


@dataclass(frozen=True)
class TableMetadata:
    """
    Immutable description of an entity type.

    Computed once per type by ``describe_schema`` and safe to share across
    threads.
    """

    entity_type: type
    table_name: str
    fields: tuple[str, ...]
    primary_keys: tuple[PrimaryKeyDescriptor, ...]
    accessors: Mapping[str, FieldAccessor]
    is_view: bool = False
    created_field: str | None = None
    updated_field: str | None = None

    @property
    def primary_key_names(self) -> list[str]:
        return [pk.name for pk in self.primary_keys]

    @property
    def has_timestamps(self) -> bool:
        return self.created_field is not None and self.updated_field is not None

    def has_field(self, name: str) -> bool:
        return name in self.accessors

    def field_type(self, name: str) -> FieldType:
        return self.accessors[name].field_type

    def get_value(self, entity: Any, name: str) -> Any:
        return self.accessors[name].getter(entity)

    def set_value(self, entity: Any, name: str, value: Any) -> None:
        self.accessors[name].setter(entity, value)


class View:
    """Marker base for read-only projections such as database views."""

    pass


class Updatable:
    """Marker base for entities that carry creation and update timestamps.

    The entity still declares both fields itself; the class attributes name them.
    """

    created_field: ClassVar[str] = "CreatedDateTime"
    updated_field: ClassVar[str] = "UpdatedDateTime"


def table(name: str) -> Callable[[type[T]], type[T]]:
    """
    Class decorator declaring the table an entity maps to.

    Also gives the class a ``describe_schema()`` classmethod.

    Args:
        name: Table name used verbatim in generated SQL

    Raises:
        SchemaError: If the name is blank
    """
    if not name or not name.strip():
        raise SchemaError("Table name cannot be null or empty")

    def decorate(cls: type[T]) -> type[T]:
        setattr(cls, TABLE_NAME_ATTRIBUTE, name)
        cls.describe_schema = classmethod(describe_schema)  # type: ignore[attr-defined]
        return cls

    return decorate


def primary_key(auto_increment: bool = True, guid: bool = False, **kwargs: Any) -> Any:
    """
    Declare a dataclass field as (part of) the primary key.

    System-assigned keys (auto-increment or GUID) default to None so entities
    can be built without them.

    Args:
        auto_increment: Key value is assigned by the database
        guid: Key value is a GUID generated client side before insert
        **kwargs: Forwarded to ``dataclasses.field``
    """
    metadata = dict(kwargs.pop("metadata", None) or {})
    metadata[PRIMARY_KEY_METADATA] = (auto_increment, guid)
    if (auto_increment or guid) and "default" not in kwargs and "default_factory" not in kwargs:
        kwargs["default"] = None
    return field(metadata=metadata, **kwargs)


def get_table_name(entity_type: type) -> str:
    name = getattr(entity_type, TABLE_NAME_ATTRIBUTE, None)
    if not name:
        raise SchemaError(f"class '{entity_type.__name__}' should declare a table name")
    return name


def get_fields(entity_type: type) -> list[str]:
    return [f.name for f in _dataclass_fields(entity_type)]


def get_primary_keys(entity_type: type) -> list[PrimaryKeyDescriptor]:
    keys = []
    for f in _dataclass_fields(entity_type):
        declaration = f.metadata.get(PRIMARY_KEY_METADATA)
        if declaration is not None:
            auto_increment, guid = declaration
            keys.append(PrimaryKeyDescriptor(f.name, auto_increment, guid))
    return keys


@cache
def describe_schema(entity_type: type) -> TableMetadata:
    """
    Build the metadata of an entity type.

    Memoized per type: repeated calls return the same TableMetadata object.

    Args:
        entity_type: A dataclass decorated with ``@table``

    Returns:
        Frozen TableMetadata

    Raises:
        SchemaError: If the type is not a dataclass, lacks a table name, has
            unsupported field annotations or misses its timestamp fields
    """
    return _describe(entity_type, get_table_name(entity_type))


@cache
def describe_record(record_type: type) -> TableMetadata:
    """
    Build the metadata of a plain dataclass used as a raw query projection.

    Same as describe_schema but no table declaration is required; the
    resulting table name is empty.
    """
    return _describe(record_type, getattr(record_type, TABLE_NAME_ATTRIBUTE, ""))


def create_instance(entity_type: type[T], values: Mapping[str, Any]) -> T:
    """
    Build a record from already typed field values.

    Fields absent from ``values`` keep their dataclass default, or None when
    they have none. Fields excluded from ``__init__`` are assigned afterwards.

    Raises:
        MappingError: If the constructor rejects the values
    """
    kwargs: dict[str, Any] = {}
    late: dict[str, Any] = {}
    for f in _dataclass_fields(entity_type):
        if f.name in values:
            (kwargs if f.init else late)[f.name] = values[f.name]
        elif f.init and f.default is dataclasses.MISSING:
            if f.default_factory is dataclasses.MISSING:
                kwargs[f.name] = None

    try:
        entity = entity_type(**kwargs)
    except (TypeError, ValueError) as e:
        raise MappingError(None, dict(values), f"cannot build {entity_type.__name__}: {e}") from e

    for name, value in late.items():
        setattr(entity, name, value)
    return entity


def _describe(entity_type: type, table_name: str) -> TableMetadata:
    dataclass_fields = _dataclass_fields(entity_type)

    try:
        hints = typing.get_type_hints(entity_type)
    except (NameError, TypeError) as e:
        raise SchemaError(f"Cannot resolve annotations of '{entity_type.__name__}': {e}") from e

    accessors: dict[str, FieldAccessor] = {}
    for f in dataclass_fields:
        try:
            field_type = FieldType.from_annotation(hints[f.name])
        except SchemaError as e:
            raise SchemaError(f"Field '{entity_type.__name__}.{f.name}': {e}") from e
        accessors[f.name] = FieldAccessor(
            name=f.name,
            field_type=field_type,
            getter=operator.attrgetter(f.name),
            setter=_make_setter(f.name),
        )

    created_field = updated_field = None
    if issubclass(entity_type, Updatable):
        created_field = entity_type.created_field
        updated_field = entity_type.updated_field
        for name in (created_field, updated_field):
            if name not in accessors:
                raise SchemaError(
                    f"Updatable entity '{entity_type.__name__}' must declare field '{name}'"
                )

    return TableMetadata(
        entity_type=entity_type,
        table_name=table_name,
        fields=tuple(accessors),
        primary_keys=tuple(get_primary_keys(entity_type)),
        accessors=types.MappingProxyType(accessors),
        is_view=issubclass(entity_type, View),
        created_field=created_field,
        updated_field=updated_field,
    )


def _dataclass_fields(entity_type: type) -> tuple[dataclasses.Field, ...]:
    if not dataclasses.is_dataclass(entity_type):
        raise SchemaError(f"class '{entity_type.__name__}' must be a dataclass")
    return dataclasses.fields(entity_type)


def _make_setter(name: str) -> Callable[[Any, Any], None]:
    def setter(entity: Any, value: Any) -> None:
        setattr(entity, name, value)

    return setter
