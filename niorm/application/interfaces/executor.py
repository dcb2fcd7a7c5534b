"""
Execution Collaborator Interface

The entity collection never talks to a driver directly. It hands SQL text and
a parameter mapping to an object implementing this protocol.
"""

from abc import abstractmethod
from collections.abc import Mapping
from typing import Any, Protocol

from niorm.domain.dialect import SQLSERVER, SqlDialect
from niorm.domain.exceptions import ValidationError


class SqlExecutor(Protocol):
    """
    Executes SQL statements on behalf of the mapping engine.

    Implementations own connection acquisition and release; every call must
    release its connection on every exit path. An implementation bound to one
    engine may expose the SqlDialect it speaks as a ``dialect`` attribute.
    """

    @abstractmethod
    def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[Mapping[str, Any]]:
        """
        Run a statement that returns rows.

        Args:
            sql: SQL text holding placeholders only
            params: Values keyed by bare parameter name

        Returns:
            Rows as column-name keyed mappings, in result order

        Raises:
            ConnectionError: If the database cannot be reached
            NiORMError: If the statement fails
        """
        ...

    @abstractmethod
    def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> int:
        """
        Run a statement that does not return rows.

        Returns:
            Number of rows affected
        """
        ...


def resolve_dialect(executor: Any, dialect: SqlDialect | None = None) -> SqlDialect:
    """
    Pick the dialect of the SQL sent to ``executor``.

    An executor may declare the dialect it speaks through a ``dialect``
    attribute. An explicit ``dialect`` must agree with it; when neither is
    known, SQL Server is assumed.

    Raises:
        ValidationError: If ``dialect`` contradicts the executor's dialect
    """
    declared = getattr(executor, "dialect", None)
    if not isinstance(declared, SqlDialect):
        declared = None

    if dialect is None:
        return declared or SQLSERVER
    if declared is not None and declared != dialect:
        raise ValidationError(
            f"Dialect {dialect.name} does not match the executor's dialect {declared.name}"
        )
    return dialect
