"""
Database Connection Management

Builds the psycopg connection pool behind PostgreSQLExecutor.
"""

# Standard library imports
import logging

# Third-party imports
import psycopg
from psycopg_pool import ConnectionPool, PoolTimeout

# Local imports
from niorm.domain.exceptions import ConnectionError
from niorm.infrastructure.config import DatabaseConfig
from niorm.infrastructure.database.adapter import PostgreSQLExecutor

logger = logging.getLogger(__name__)


class ConnectionFactory:
    """
    Factory for the shared connection pool.

    One pool per factory; ``create_executor`` hands out executors sharing it.
    """

    def __init__(self, config: DatabaseConfig | None = None) -> None:
        """
        Initialize factory.

        Args:
            config: Database configuration (defaults to environment)
        """
        self.config = config or DatabaseConfig.from_env()
        self._pool: ConnectionPool | None = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def create_pool(self) -> ConnectionPool:
        """
        Open the connection pool and wait until its minimum size is reached.

        Returns:
            The open pool

        Raises:
            ConnectionError: If the pool cannot reach the database
        """
        if self._pool is not None:
            return self._pool

        pool = ConnectionPool(
            conninfo=self.config.get_connection_string(),
            min_size=self.config.min_pool_size,
            max_size=self.config.max_pool_size,
            timeout=self.config.connect_timeout,
            open=False,
        )
        try:
            pool.open(wait=True, timeout=self.config.connect_timeout)
        except (PoolTimeout, psycopg.OperationalError) as e:
            logger.error(f"Failed to open connection pool for {self.config}: {e}")
            pool.close()
            raise ConnectionError(f"Failed to open connection pool: {e}", e) from e

        logger.info(
            f"Opened connection pool for {self.config} "
            f"(pool size: {self.config.min_pool_size}-{self.config.max_pool_size})"
        )
        self._pool = pool
        return pool

    def create_executor(self) -> PostgreSQLExecutor:
        """Executor bound to the factory's pool, opening it if needed."""
        return PostgreSQLExecutor(self.create_pool())

    def close(self) -> None:
        """Close the pool, if open."""
        if self._pool is not None:
            self._pool.close()
            self._pool = None
            logger.info("Connection pool closed")

    def __enter__(self) -> "ConnectionFactory":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
