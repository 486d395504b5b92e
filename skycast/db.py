"""
Database configuration for SQLAlchemy.

SQLite by default: trivial to run locally and enough for the two
"collections" we need (weather queries and AI insights).
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from .settings import settings


def make_engine(url: str) -> Engine:
    """
    Build an engine for the configured URL.

    SQLite needs check_same_thread=False for FastAPI because FastAPI uses threads.
    In-memory SQLite additionally needs a single shared connection, otherwise
    every new connection sees an empty database.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


engine = make_engine(settings.database_url)

# Session factory used by dependency injection
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


def get_db():
    """
    FastAPI dependency that yields a DB session per request,
    then closes it cleanly afterwards.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
