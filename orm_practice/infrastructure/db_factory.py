"""
Database handle factory for the ORM practice walkthroughs.

A ``Database`` owns one SQLAlchemy engine and its session factory. It is
created from a single data-source locator (a file path, ``:memory:`` or a full
URL) and passed explicitly to whoever needs it, so tests can swap in an
isolated in-memory database without touching shared state.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from orm_practice.config import Settings, get_settings
from orm_practice.domain.models import Base
from orm_practice.exceptions import DatabaseConnectionError, MigrationError
from orm_practice.utils.logging import get_logger

log = get_logger(__name__)

MEMORY_LOCATOR = ":memory:"


def build_url(locator: str) -> str:
    """
    Turn a data-source locator into a SQLAlchemy URL.

    ``:memory:`` maps to an in-memory SQLite database, anything containing a
    scheme is used as-is (plain ``postgresql://`` URLs are routed to the
    psycopg 3 driver), and everything else is treated as a SQLite file path.
    """
    locator = locator.strip()
    if not locator:
        raise ValueError("Data-source locator must not be empty")
    if locator == MEMORY_LOCATOR:
        return "sqlite://"
    if "://" in locator:
        scheme, rest = locator.split("://", 1)
        if scheme in ("postgres", "postgresql"):
            return f"postgresql+psycopg://{rest}"
        return locator
    return f"sqlite:///{locator}"


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """
    Let SQLAlchemy own BEGIN on pysqlite connections.

    The driver's implicit transaction handling otherwise commits around
    SAVEPOINT statements.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


class Database:
    """
    Explicit handle on one database: engine, session factory and lifecycle.

    Example
    -------
        database = open_database(":memory:")
        with database.session_scope() as session:
            session.add(User(name="Potato", email="potato@example.com"))
        database.close()
    """

    def __init__(self, locator: str) -> None:
        self.locator = locator
        self.url = build_url(locator)
        self.engine: Engine = create_engine(self.url)
        if self.engine.dialect.name == "sqlite":
            _enable_sqlite_savepoints(self.engine)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def new_session(self) -> Session:
        """
        Open a new ORM session bound to this database.

        Raises
        ------
        DatabaseConnectionError
            If the handle has been closed.
        """
        if self._closed:
            raise DatabaseConnectionError(f"Database {self.locator!r} is closed")
        return self._session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Context manager for a short unit of work that commits on success.

        Every exit path releases the session; any exception rolls back first.
        """
        session = self.new_session()
        try:
            yield session
            session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type(OperationalError),
        reraise=True,
    )
    def _ping(self) -> None:
        with self.engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")

    def ping(self) -> None:
        """
        Check connectivity, retrying transient failures up to 3 times.

        Raises
        ------
        DatabaseConnectionError
            If the handle is closed or the database cannot be reached.
        """
        if self._closed:
            raise DatabaseConnectionError(f"Database {self.locator!r} is closed")
        try:
            self._ping()
        except SQLAlchemyError as exc:
            raise DatabaseConnectionError(
                f"Cannot reach database {self.locator!r}: {exc}"
            ) from exc

    def close(self) -> None:
        """Dispose of the engine. Further sessions are refused."""
        if not self._closed:
            self.engine.dispose()
            self._closed = True

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_database(
    locator: Optional[str] = None, settings: Optional[Settings] = None
) -> Database:
    """
    Create a ``Database`` for the locator (default from settings) and verify it.

    Raises
    ------
    DatabaseConnectionError
        If the database cannot be reached after all retry attempts.
    """
    settings = settings or get_settings()
    database = Database(locator or settings.db_locator)
    try:
        database.ping()
    except DatabaseConnectionError:
        database.close()
        raise
    log.info(
        f"[DB OPEN] {database.locator}",
        extra={"locator": database.locator, "dialect": database.dialect_name},
    )
    return database


def migrate(database: Database, drop_existing: bool = False) -> None:
    """
    Create (or recreate) every mapped table.

    Parameters
    ----------
    database : Database
        Target handle.
    drop_existing : bool
        Drop the mapped tables first so the walkthrough starts from scratch.

    Raises
    ------
    MigrationError
        If the schema cannot be created.
    """
    if database.closed:
        raise DatabaseConnectionError(f"Database {database.locator!r} is closed")
    try:
        if drop_existing:
            Base.metadata.drop_all(database.engine)
        Base.metadata.create_all(database.engine)
    except SQLAlchemyError as exc:
        raise MigrationError(f"Schema migration failed: {exc}") from exc
    log.info(
        "[MIGRATE] schema ready",
        extra={"tables": sorted(Base.metadata.tables), "dropped": drop_existing},
    )


__all__ = [
    "MEMORY_LOCATOR",
    "Database",
    "build_url",
    "migrate",
    "open_database",
]
