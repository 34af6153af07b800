"""
==============================================================================
Database Connection Module
==============================================================================

SQLAlchemy engine and session lifecycle for the local inventory.

Layout:
-------
    DatabaseManager ─▶ Engine (pool) ─▶ sessionmaker ─▶ Session

SQLite:
-------
- check_same_thread disabled: sessions are used from asyncio worker threads
- In-memory URLs use a StaticPool so every session sees the same database
- Foreign keys enabled per connection
- Transactions are begun by SQLAlchemy, not pysqlite, so a write scope can
  open with BEGIN IMMEDIATE and hold the write lock from its first read

==============================================================================
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from functools import lru_cache
from typing import Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from stockscan.config import get_settings


# Module logger
logger = logging.getLogger(__name__)

# Declarative base shared by all ORM models
Base = declarative_base()


def _is_memory_sqlite(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:")


class DatabaseManager:
    """
    Owns the engine and the session factory.

    The engine is created lazily on first use. Pass an existing engine to
    share one connection pool (tests pass an in-memory engine).

    Example:
        >>> manager = DatabaseManager()
        >>> with manager.session_scope() as session:
        ...     session.query(InventoryItem).count()
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None
    ) -> None:
        settings = get_settings()
        self._database_url = database_url or settings.database_url
        self._echo = settings.debug
        self._engine: Optional[Engine] = engine
        self._session_factory: Optional[sessionmaker] = None

    # =========================================================================
    # ENGINE
    # =========================================================================

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    def _create_engine(self) -> Engine:
        url = self._database_url

        if not url.startswith("sqlite"):
            logger.info(f"Created pooled database engine: {url}")
            return create_engine(
                url,
                pool_size=5,
                max_overflow=10,
                pool_timeout=30,
                pool_recycle=1800,
                pool_pre_ping=True,
                echo=self._echo,
            )

        kwargs = {"connect_args": {"check_same_thread": False}, "echo": self._echo}
        if _is_memory_sqlite(url):
            kwargs["poolclass"] = StaticPool

        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def begin_sqlite_transaction(conn):
            mode = conn.get_execution_options().get("sqlite_begin", "DEFERRED")
            conn.exec_driver_sql(f"BEGIN {mode}")

        logger.info(f"Created SQLite engine: {url}")
        return engine

    # =========================================================================
    # SESSIONS
    # =========================================================================

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def get_session(self) -> Session:
        """New session; the caller closes it."""
        return self.session_factory()

    @contextmanager
    def session_scope(self, for_write: bool = False) -> Generator[Session, None, None]:
        """
        Transactional scope: commit on success, rollback on error, always close.

        Args:
            for_write: Take the SQLite write lock when the transaction begins,
                so a read-then-update cannot interleave with another writer

        Yields:
            SQLAlchemy Session
        """
        session = self.get_session()
        try:
            if for_write and self.engine.dialect.name == "sqlite":
                session.connection(execution_options={"sqlite_begin": "IMMEDIATE"})
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # =========================================================================
    # SCHEMA
    # =========================================================================

    def create_tables(self) -> None:
        # Import registers the models on Base.metadata
        from stockscan.db import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables created/verified")

    def drop_tables(self) -> None:
        Base.metadata.drop_all(bind=self.engine)
        logger.warning("All database tables dropped")

    def verify_connection(self) -> bool:
        """
        Run a trivial query.

        Returns:
            True if the database answered
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database connection failed: {e}")
            return False

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
            logger.info("Database connection pool disposed")

    def __repr__(self) -> str:
        return f"DatabaseManager(url={self._database_url!r})"


@lru_cache(maxsize=1)
def get_database_manager() -> DatabaseManager:
    """Process-wide DatabaseManager."""
    return DatabaseManager()


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding a request-scoped session.

    Usage:
        @router.get("/items/{item_id}")
        def read_item(item_id: int, db: Session = Depends(get_db)):
            ...
    """
    session = get_database_manager().get_session()
    try:
        yield session
    finally:
        session.close()
