"""
Database engine and session handling for the catalog.

The application keeps one engine and one scoped session factory per process.
init_db() must run before the first session is requested; get_session()
falls back to the configured URL if it has not.
"""

import os
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.pool import StaticPool

from bookcatalog.db.models import Base

DEFAULT_DATABASE_URL = "sqlite:///data/book-catalog.db"

MEMORY_URLS = ("sqlite://", "sqlite:///:memory:")

engine: Optional[Engine] = None
SessionLocal = None


def get_database_url() -> str:
    """Database URL from DATABASE_URL, or the bundled SQLite file."""
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def is_memory_url(db_url: str) -> bool:
    return db_url in MEMORY_URLS


def ensure_data_directory(db_url: str) -> None:
    """Create the parent directory of a SQLite database file."""
    if not db_url.startswith("sqlite:///") or is_memory_url(db_url):
        return
    db_dir = os.path.dirname(db_url[len("sqlite:///"):])
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)


def create_db_engine(db_url: str) -> Engine:
    """
    Build an engine for db_url.

    SQLite connections may be shared across threads (waitress serves from a
    pool), enforce foreign keys, and an in-memory database keeps a single
    connection so that every session sees the same tables.
    """
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, echo=False)

    options = {"connect_args": {"check_same_thread": False}}
    if is_memory_url(db_url):
        options["poolclass"] = StaticPool
    sqlite_engine = create_engine(db_url, echo=False, **options)

    @event.listens_for(sqlite_engine, "connect")
    def enable_foreign_keys(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


def init_db(db_url: Optional[str] = None) -> Engine:
    """Create the engine and session factory, then the catalog tables."""
    global engine, SessionLocal

    db_url = db_url or get_database_url()
    ensure_data_directory(db_url)

    engine = create_db_engine(db_url)
    SessionLocal = scoped_session(
        sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    )
    Base.metadata.create_all(bind=engine)
    return engine


def get_session():
    if SessionLocal is None:
        init_db()
    return SessionLocal()


@contextmanager
def get_db_session():
    """
    Session that commits when the block exits cleanly.

    Any exception rolls the session back and propagates.
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_db() -> None:
    """Drop the session factory and dispose of the engine."""
    global engine, SessionLocal
    if SessionLocal is not None:
        SessionLocal.remove()
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None
