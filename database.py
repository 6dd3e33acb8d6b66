"""
Database connection module.

Owns the SQLAlchemy engine used by the data-access modules and hands out
transactional connections.
"""

import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from config import get_config

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Base exception for database errors."""
    pass


class ConnectionPoolError(DatabaseError):
    """Exception for engine / connection pool errors."""
    pass


class DatabaseManager:
    """
    Manages the SQLAlchemy engine and its connection pool.

    ``get_connection()`` wraps every use in a transaction: committed when the
    block exits normally, rolled back when it raises. Statement errors such
    as unique-constraint violations propagate unchanged.
    """

    def __init__(self, url: Optional[str] = None):
        """Initialize database manager.

        Args:
            url: SQLAlchemy URL. Defaults to the configured connection string.
        """
        self.config = get_config().database
        self.url = url or self.config.connection_string
        self._engine: Optional[Engine] = None
        self._initialized = False

    @property
    def engine(self) -> Engine:
        if not self._initialized:
            self.initialize()
        return self._engine

    def initialize(self) -> None:
        """Create the engine."""
        if self._initialized:
            logger.warning("Database manager already initialized")
            return

        try:
            if self.url.startswith("sqlite"):
                self._engine = create_engine(self.url, echo=self.config.echo)
            else:
                self._engine = create_engine(
                    self.url,
                    echo=self.config.echo,
                    pool_size=self.config.pool_size,
                    max_overflow=self.config.max_overflow,
                    pool_timeout=self.config.pool_timeout,
                    pool_recycle=self.config.pool_recycle,
                    pool_pre_ping=True,
                )
            self._initialized = True
            logger.info(
                f"Database engine initialized (dialect={self._engine.dialect.name})"
            )
        except Exception as e:
            logger.error(f"Failed to initialize database engine: {e}")
            raise ConnectionPoolError(f"Engine initialization failed: {e}")

    def close(self) -> None:
        """Dispose of all pooled connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._initialized = False
            logger.info("Database engine disposed")

    @contextmanager
    def get_connection(self):
        """
        Get a connection inside a transaction.

        Yields:
            sqlalchemy.engine.Connection: Connection with an open transaction
        """
        with self.engine.begin() as conn:
            yield conn


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """Get or create global database manager instance."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
        _db_manager.initialize()
    return _db_manager


def set_db_manager(manager: Optional[DatabaseManager]) -> None:
    """Replace the global database manager (closing the previous one)."""
    global _db_manager
    if _db_manager is not None and _db_manager is not manager:
        _db_manager.close()
    _db_manager = manager


def close_db_manager() -> None:
    """Close global database manager."""
    global _db_manager
    if _db_manager:
        _db_manager.close()
        _db_manager = None
