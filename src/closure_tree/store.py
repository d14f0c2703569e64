"""
Backing store for closure-tree.

TreeStore owns the SQLAlchemy engine, the session factory and the ORM models
built from a TreeConfig. Every read and write in the library goes through
TreeStore.transaction(), which:

    - joins the thread's open transaction when called inside another one, so
      composite operations (move, rebuild, cascade delete) commit or roll
      back as a unit
    - commits on success and rolls back on any exception
    - turns SQLAlchemy errors into StoreFailure

Works with any SQLAlchemy-compatible database (PostgreSQL, MySQL, SQLite,
etc.).

Example:
    >>> store = TreeStore(url="sqlite:///tree.db", config=TreeConfig())
    >>> with store.transaction() as session:
    ...     session.query(store.node_model).count()
    0
    >>> store.close()
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import TreeConfig
from .exceptions import ClosureTreeError, InvalidOperation, StoreFailure
from .models import create_tree_models

logger = logging.getLogger(__name__)


class TreeStore:
    """
    Engine, session and schema management for one tree.

    Args:
        url: SQLAlchemy connection URL
        config: Table and column names (defaults to TreeConfig())
        pool_size: Maximum pool connections (default: 5)
        echo: Enable SQL logging (default: False)
        auto_migrate: Create tables and indexes on init (default: True)
        lazy: Defer engine creation until first use (default: False)
    """

    def __init__(
        self,
        url: str,
        config: Optional[TreeConfig] = None,
        pool_size: int = 5,
        echo: bool = False,
        auto_migrate: bool = True,
        lazy: bool = False,
    ):
        self._url = url
        self._config = config or TreeConfig()
        self._pool_size = pool_size
        self._echo = echo
        self._auto_migrate = auto_migrate

        # Held for the whole outermost transaction
        self._lock = threading.RLock()
        self._local = threading.local()

        self._engine = None
        self._session_factory = None
        self._base = None
        self._node_model = None
        self._edge_model = None
        self._initialized = False

        if not lazy:
            self._ensure_initialized()

    @property
    def config(self) -> TreeConfig:
        return self._config

    @property
    def url(self) -> str:
        return self._url

    @property
    def node_model(self):
        self._ensure_initialized()
        return self._node_model

    @property
    def edge_model(self):
        self._ensure_initialized()
        return self._edge_model

    @property
    def engine(self):
        self._ensure_initialized()
        return self._engine

    def _ensure_initialized(self) -> None:
        """Lazily initialize engine, session factory, and schema."""
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                self._engine = self._create_engine()
                self._session_factory = sessionmaker(bind=self._engine)
                self._base = declarative_base()
                self._node_model, self._edge_model = create_tree_models(
                    self._base, self._config
                )
                if self._auto_migrate:
                    self._base.metadata.create_all(self._engine)
            except SQLAlchemyError as e:
                raise StoreFailure(f"Could not initialize tree store: {e}") from e

            self._initialized = True
            logger.debug(
                "TreeStore initialized: %s / %s",
                self._config.node_table,
                self._config.hierarchy_table_name,
            )

    def _create_engine(self):
        if not self._url.startswith("sqlite"):
            return create_engine(
                self._url,
                echo=self._echo,
                pool_size=self._pool_size,
                max_overflow=self._pool_size * 2,
            )

        if ":memory:" in self._url or self._url == "sqlite://":
            engine = create_engine(
                self._url,
                echo=self._echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        else:
            engine = create_engine(
                self._url,
                echo=self._echo,
                pool_size=self._pool_size,
                connect_args={"check_same_thread": False},
            )

        # Enable foreign key enforcement for SQLite
        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    def has_schema(self) -> bool:
        """True if both the node and the closure table exist."""
        names = set(inspect(self.engine).get_table_names())
        return {self._config.node_table, self._config.hierarchy_table_name} <= names

    def create_schema(self) -> None:
        """Create both tables and their indexes if missing."""
        self._ensure_initialized()
        try:
            self._base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StoreFailure(f"Could not create schema: {e}") from e

    def scope_criteria(self, scope: Optional[Dict[str, Any]]) -> List[Any]:
        """
        Build filter criteria restricting node queries to one scope.

        Args:
            scope: Mapping of scope column to value; None means every scope.
                   A None value matches NULL.

        Raises:
            InvalidOperation: If a key is not a configured scope column
        """
        if not scope:
            return []
        criteria = []
        for column, value in scope.items():
            if column not in self._config.scope_columns:
                raise InvalidOperation(
                    f"'{column}' is not a scope column. "
                    f"Scope columns: {self._config.scope_columns}"
                )
            criteria.append(getattr(self.node_model, column) == value)
        return criteria

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "session", None) is not None

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Run a block inside one database transaction.

        Nested calls on the same thread reuse the outer session; only the
        outermost block commits or rolls back.

        Yields:
            The active Session

        Raises:
            StoreFailure: If the database rejected or could not finish the work
        """
        session = getattr(self._local, "session", None)
        if session is not None:
            yield session
            return

        self._ensure_initialized()
        with self._lock:
            session = self._session_factory()
            self._local.session = session
            try:
                yield session
                session.commit()
            except ClosureTreeError:
                session.rollback()
                raise
            except SQLAlchemyError as e:
                session.rollback()
                raise StoreFailure(f"Transaction failed: {e}") from e
            except Exception:
                session.rollback()
                raise
            finally:
                self._local.session = None
                session.close()

    def close(self) -> None:
        """Close engine and release resources."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            self._initialized = False
        logger.debug("TreeStore closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
        return False


__all__ = ["TreeStore"]
