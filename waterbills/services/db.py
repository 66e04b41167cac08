"""Database connection and session management."""

import logging
import os

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from waterbills.models import Base

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite:///./waterbills.db"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:  # noqa: ARG001
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(database_url: str | None = None) -> Engine:
    """Create an engine for the given URL (or DATABASE_URL).

    SQLite in-memory databases use StaticPool so every session sees the
    same database; file-based SQLite gets a busy timeout so concurrent
    writers wait instead of failing immediately.
    """
    url = database_url or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

    if url.startswith("sqlite"):
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            engine = create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(
                url,
                connect_args={"check_same_thread": False, "timeout": 30},
            )
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    else:
        engine = create_engine(url, pool_pre_ping=True)

    logger.debug("Created database engine for %s", engine.url.render_as_string(hide_password=True))
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory used by the ledger."""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create all tables (development and tests; managed databases use Alembic)."""
    Base.metadata.create_all(engine)


__all__ = [
    "DEFAULT_DATABASE_URL",
    "create_db_engine",
    "create_session_factory",
    "init_db",
]
