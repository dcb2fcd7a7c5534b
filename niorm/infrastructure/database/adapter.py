"""
PostgreSQL Executor

Synchronous SqlExecutor built on psycopg3 and a psycopg_pool connection pool.
Each call borrows one connection for one statement and returns it to the pool
on every exit path; the pool commits on success and rolls back on failure.
"""

# Standard library imports
import logging
from collections.abc import Mapping
from typing import Any

# Third-party imports
import psycopg
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

# Local imports
from niorm.domain.dialect import POSTGRESQL
from niorm.domain.exceptions import ConnectionError, NiORMError

logger = logging.getLogger(__name__)


class PostgreSQLExecutor:
    """
    PostgreSQL implementation of the SqlExecutor protocol.

    It declares the ``postgresql`` dialect, so collections built on it emit
    psycopg's ``%(name)s`` placeholders. No retries are attempted.
    """

    dialect = POSTGRESQL

    def __init__(self, pool: ConnectionPool) -> None:
        """
        Initialize executor with connection pool.

        Args:
            pool: psycopg3 connection pool
        """
        self._pool = pool

    @property
    def pool(self) -> ConnectionPool:
        """Get the connection pool."""
        return self._pool

    def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """
        Run a statement and fetch every row.

        Args:
            sql: SQL text with ``%(name)s`` placeholders
            params: Values keyed by parameter name

        Returns:
            Rows as dictionaries; empty when the statement produced no result set

        Raises:
            ConnectionError: If no connection can be acquired or it drops
            NiORMError: If the statement fails
        """
        try:
            with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params or None)
                rows = cur.fetchall() if cur.description is not None else []
                logger.debug(f"Query: {sql[:100]}... | Count: {len(rows)}")
                return rows
        except (PoolTimeout, psycopg.OperationalError) as e:
            logger.error(f"Query failed to reach database: {e} | Query: {sql[:100]}...")
            raise ConnectionError(f"Failed to acquire database connection: {e}", e) from e
        except psycopg.Error as e:
            logger.error(f"Query failed: {e} | Query: {sql[:100]}...")
            raise NiORMError(f"Query execution failed: {e}", e, sql, "query") from e

    def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> int:
        """
        Run a statement and report the rows it affected.

        Args:
            sql: SQL text with ``%(name)s`` placeholders
            params: Values keyed by parameter name

        Returns:
            Rows affected as reported by the driver

        Raises:
            ConnectionError: If no connection can be acquired or it drops
            NiORMError: If the statement fails
        """
        try:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute(sql, params or None)
                logger.debug(f"Query executed: {sql[:100]}... | Rows: {cur.rowcount}")
                return cur.rowcount
        except (PoolTimeout, psycopg.OperationalError) as e:
            logger.error(f"Execute failed to reach database: {e} | Query: {sql[:100]}...")
            raise ConnectionError(f"Failed to acquire database connection: {e}", e) from e
        except psycopg.Error as e:
            logger.error(f"Execute failed: {e} | Query: {sql[:100]}...")
            raise NiORMError(f"Query execution failed: {e}", e, sql, "execute") from e
