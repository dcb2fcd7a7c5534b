"""
Database infrastructure.

Parameter binding for generated statements plus the psycopg executor and its
connection pool.
"""

from .adapter import PostgreSQLExecutor
from .connection import ConnectionFactory
from .parameters import BoundParameter, DbType, ParameterBuilder, SqlStatement, infer_db_type

__all__ = [
    "BoundParameter",
    "ConnectionFactory",
    "DbType",
    "ParameterBuilder",
    "PostgreSQLExecutor",
    "SqlStatement",
    "infer_db_type",
]
