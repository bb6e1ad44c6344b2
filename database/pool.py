"""
Database connection pooling for PostgreSQL.

Provides a thread-safe psycopg2 connection pool with validated connections
and retry on acquisition.
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

from psycopg2 import DatabaseError, OperationalError, pool

from src.config import config as app_config
from src.storage.retry import DATABASE_RETRY_CONFIG, RetryConfig, retry_operation

logger = logging.getLogger(__name__)


class DatabasePool:
    """
    Thread-safe database connection pool manager.

    Uses psycopg2's ThreadedConnectionPool. Connections are handed out by
    the ``get_connection`` context manager, which rolls back on error and
    always returns the connection to the pool.
    """

    def __init__(
        self,
        min_connections: int = 1,
        max_connections: int = 5,
        database_url: Optional[str] = None,
        **connection_kwargs
    ):
        """
        Args:
            min_connections: Minimum number of connections to maintain
            max_connections: Maximum number of connections allowed
            database_url: PostgreSQL connection URL (defaults to config)
            **connection_kwargs: Additional psycopg2 connection parameters
        """
        self.min_connections = min_connections
        self.max_connections = max_connections
        self.database_url = database_url or app_config.database_url
        self._pool: Optional[pool.ThreadedConnectionPool] = None
        self._connection_kwargs = connection_kwargs

        if not self.database_url:
            raise ValueError(
                "Database URL must be provided via parameter, DATABASE_URL or DB_* settings"
            )

        self._stats = {
            "connections_failed": 0,
            "connections_discarded": 0,
            "last_health_check": None,
        }

        logger.info(f"Initialized database pool: min={min_connections}, max={max_connections}")

    def initialize(self) -> None:
        """Create the underlying pool and check connectivity."""
        if self._pool is not None:
            logger.warning("Pool already initialized")
            return

        try:
            self._pool = pool.ThreadedConnectionPool(
                minconn=self.min_connections,
                maxconn=self.max_connections,
                dsn=self.database_url,
                **self._connection_kwargs
            )
        except DatabaseError as e:
            logger.error(f"Failed to initialize connection pool: {e}")
            self._stats["connections_failed"] += 1
            raise

        logger.info("Database connection pool initialized successfully")

    def close(self) -> None:
        """Close all connections in the pool."""
        if self._pool is None:
            return
        try:
            self._pool.closeall()
            logger.info("Database connection pool closed")
        finally:
            self._pool = None

    def _acquire(self):
        conn = self._pool.getconn()
        if not self._validate_connection(conn):
            self._stats["connections_discarded"] += 1
            self._pool.putconn(conn, close=True)
            raise OperationalError("Connection validation failed")
        return conn

    @contextmanager
    def get_connection(self, retry: bool = True, retry_config: Optional[RetryConfig] = None):
        """
        Get a validated connection from the pool.

        Args:
            retry: Retry acquisition on OperationalError
            retry_config: Override for DATABASE_RETRY_CONFIG

        Yields:
            psycopg2 connection

        Example:
            with pool.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT * FROM export_jobs WHERE id = %s", (export_job_id,))
        """
        if self._pool is None:
            self.initialize()

        try:
            if retry:
                conn = retry_operation(
                    self._acquire,
                    retry_config or DATABASE_RETRY_CONFIG,
                    "database connection",
                )
            else:
                conn = self._acquire()
        except OperationalError:
            self._stats["connections_failed"] += 1
            raise

        try:
            yield conn
        except Exception:
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            if self._pool is not None:
                self._pool.putconn(conn)

    def _validate_connection(self, conn) -> bool:
        """Check that a pooled connection is open and answers a trivial query."""
        if conn is None or conn.closed:
            return False

        try:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                result = cur.fetchone()
        except DatabaseError as e:
            logger.warning(f"Connection validation failed: {e}")
            return False

        return bool(result) and result[0] == 1

    def health_check(self) -> Dict[str, Any]:
        """
        Returns:
            Dictionary with health status and statistics
        """
        status = {
            "healthy": False,
            "error": None,
            "stats": self._stats.copy(),
            "timestamp": time.time(),
        }

        try:
            with self.get_connection(retry=False) as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT version()")
                    status["database_version"] = cur.fetchone()[0]
                    status["healthy"] = True
            self._stats["last_health_check"] = status["timestamp"]
        except DatabaseError as e:
            status["error"] = str(e)
            logger.error(f"Health check failed: {e}")

        return status

    def get_stats(self) -> Dict[str, Any]:
        return self._stats.copy()


# Global pool instance
_pool: Optional[DatabasePool] = None


def get_connection_pool(force_new: bool = False) -> DatabasePool:
    """Get or create the global connection pool instance."""
    global _pool

    if _pool is None or force_new:
        if _pool is not None:
            _pool.close()
        _pool = DatabasePool(
            min_connections=app_config.db_min_connections,
            max_connections=app_config.db_max_connections,
        )
        _pool.initialize()

    return _pool


@contextmanager
def get_connection(retry: bool = True):
    """
    Convenience wrapper around the global pool.

    Example:
        from database import get_connection

        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT count(*) FROM failed_jobs")
    """
    with get_connection_pool().get_connection(retry=retry) as conn:
        yield conn


def close_pool() -> None:
    """Close the global connection pool."""
    global _pool

    if _pool is not None:
        _pool.close()
        _pool = None
        logger.info("Global connection pool closed")
