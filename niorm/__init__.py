"""
NiORM - a reflection-driven object/relational mapper.

Entities are dataclasses declared with ``@table``; a DataCore hands out one
EntityCollection per entity type, and every collection sends parameterized SQL
to a SqlExecutor.

    core = DataCore(executor)
    people = core.create_entity(Person)
    bob = people.find(5)
"""

from .domain.dialect import POSTGRESQL, SQLSERVER, SqlDialect, get_dialect
from .domain.exceptions import (
    ConnectionError,
    DuplicateParameterError,
    MappingError,
    NiORMError,
    SchemaError,
    UnsafeSqlError,
    UnsupportedExpressionError,
    ValidationError,
)
from .domain.expressions import NOW, Unwrap
from .domain.schema import Updatable, View, describe_schema, primary_key, table
from .infrastructure.repositories.data_core import DataCore
from .infrastructure.repositories.entities import CollectionState, EntityCollection

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "DataCore",
    "EntityCollection",
    "CollectionState",
    # Declarations
    "table",
    "primary_key",
    "View",
    "Updatable",
    "describe_schema",
    # Predicates
    "NOW",
    "Unwrap",
    # Dialects
    "SqlDialect",
    "SQLSERVER",
    "POSTGRESQL",
    "get_dialect",
    # Exceptions
    "NiORMError",
    "SchemaError",
    "ValidationError",
    "UnsafeSqlError",
    "ConnectionError",
    "MappingError",
    "UnsupportedExpressionError",
    "DuplicateParameterError",
]
