"""Database connection and session management."""

import os
from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Global engine instance
_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None

# Base class for all database models
Base = declarative_base()


def get_database_engine(database_url: Optional[str] = None,
                        echo: bool = False,
                        connect_args: Optional[dict] = None) -> Engine:
    """Get or create database engine with configuration."""
    global _engine

    if _engine is None:
        if database_url is None:
            database_url = os.getenv("AUTOMATION_ENGINE_DATABASE_URL", "sqlite:///./automation_engine.db")

        if connect_args is None:
            if database_url.startswith("sqlite"):
                connect_args = {"check_same_thread": False}
            else:
                connect_args = {}

        # One shared connection keeps in-memory SQLite databases alive across sessions
        if database_url.startswith("sqlite"):
            _engine = create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=echo
            )
        else:
            _engine = create_engine(
                database_url,
                echo=echo,
                connect_args=connect_args
            )

    return _engine


def get_session_factory() -> sessionmaker:
    """Get the session factory bound to the global engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False,
                                        bind=get_database_engine())
    return _session_factory


def init_database(database_url: Optional[str] = None, echo: bool = False,
                  connect_args: Optional[dict] = None) -> sessionmaker:
    """Create the engine and tables, returning the session factory."""
    get_database_engine(database_url, echo=echo, connect_args=connect_args)
    create_tables()
    return get_session_factory()


def reset_database_engine():
    """Reset the global database engine (mainly for testing)."""
    global _engine, _session_factory
    if _engine:
        _engine.dispose()
    _engine = None
    _session_factory = None


def get_db():
    """Dependency to get database session."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


def create_tables():
    """Create all database tables."""
    from . import models  # noqa: F401  registers the mappers on Base
    Base.metadata.create_all(bind=get_database_engine())


def drop_tables():
    """Drop all database tables."""
    Base.metadata.drop_all(bind=get_database_engine())
