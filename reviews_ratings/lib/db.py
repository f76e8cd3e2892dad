"""
Database engine and session management using SQLAlchemy 2.x.
Backs the durable review store; the engine is created on first use.
"""
from typing import Optional

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool

from reviews_ratings.lib.settings import settings


# Base class for all SQLAlchemy models
class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create an engine suited to the database URL.

    SQLite connections are shared across the store worker threads, and an
    in-memory SQLite database must live on a single connection.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=echo, **kwargs)

    return create_engine(
        database_url,
        echo=echo,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=settings.store_max_workers,
        max_overflow=10,
    )


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine() -> Engine:
    """Get the application engine, creating it from settings on first use."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(settings.database_url, echo=settings.debug)
    return _engine


def get_session_factory() -> sessionmaker:
    """Get the session factory bound to the application engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
    return _session_factory


def init_db(engine: Optional[Engine] = None) -> None:
    """
    Create all tables. Should be called after all models are imported.
    """
    # Register the store tables on Base.metadata
    import reviews_ratings.models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


def dispose_engine() -> None:
    """Close pooled connections (called on application shutdown)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
