"""
Database configuration and connection management.

This module provides:
- SQLAlchemy engine and session management
- SQLite-friendly engine options (file and in-memory URLs)
- The single key/value table backing the primary store
"""
from typing import Optional
from contextlib import contextmanager
from sqlalchemy import create_engine, MetaData, Table, Column, String, DateTime, Text, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker
from sqlalchemy.sql import func

from coursegate.core.config import get_database_url


# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Process-wide engine, set up by init_engine()
_engine = None


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine for ``url``.

    In-memory SQLite URLs get a StaticPool so every session sees the same
    database; file SQLite URLs allow cross-thread use.
    """
    if url.startswith("sqlite"):
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            return create_engine(
                url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo,
            )
        return create_engine(url, connect_args={"check_same_thread": False}, echo=echo)
    return create_engine(url, pool_pre_ping=True, echo=echo)


def init_engine(database_url: Optional[str] = None) -> Engine:
    """
    Initialize the process-wide SQLAlchemy engine.

    Args:
        database_url: Optional override for DATABASE_URL
    """
    global _engine

    url = database_url or get_database_url()

    if not url:
        raise ValueError(
            "DATABASE_URL is not configured. "
            "Set DATABASE_URL in environment or .env file."
        )

    _engine = build_engine(url)
    return _engine


def get_engine() -> Engine:
    """Get the current SQLAlchemy engine."""
    global _engine
    if _engine is None:
        init_engine()
    return _engine


def dispose_engine() -> None:
    """Drop the process-wide engine (tests switch URLs between cases)."""
    global _engine
    if _engine is not None:
        _engine.dispose()
    _engine = None


def make_session_factory(engine: Engine) -> sessionmaker:
    """One factory per engine; callers keep it for the engine's lifetime."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@contextmanager
def get_db_session(session_factory: sessionmaker):
    """
    Context manager for database sessions.

    Usage:
        with get_db_session(factory) as session:
            session.execute(...)

    Commits on clean exit, rolls back and re-raises otherwise.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables(engine: Optional[Engine] = None) -> None:
    """
    Create all tables defined in metadata.

    This is idempotent - tables that already exist will not be recreated.
    """
    metadata.create_all(bind=engine or get_engine())


def drop_all_tables(engine: Optional[Engine] = None) -> None:
    """
    Drop all tables defined in metadata.

    WARNING: This is destructive! Only use in tests or development.
    """
    metadata.drop_all(bind=engine or get_engine())


def check_connection(engine: Optional[Engine] = None) -> bool:
    """Return True when the database answers a trivial query."""
    try:
        with (engine or get_engine()).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


# Every persisted record of the core (activation record, used-code set,
# admin key ledger, audit log, anonymous id, language preference) is one
# JSON document under a stable key.
kv_entries = Table(
    "kv_entries",
    metadata,
    Column("key", String(128), primary_key=True),
    Column("value", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
)
