"""Database configuration and session management."""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from reelqueue.config import DatabaseConfig


class Base(DeclarativeBase):
    """Shared base for all models."""

    metadata = MetaData()


def build_engine(config: DatabaseConfig, **overrides: Any) -> Engine:
    """Create an engine with settings tuned for PostgreSQL or SQLite."""
    connect_args: dict[str, Any] = {}
    engine_kwargs: dict[str, Any] = {
        "echo": False,
        "future": True,
    }

    if config.is_postgres:
        # Production PostgreSQL Settings
        engine_kwargs.update({
            "pool_size": config.pool_size,
            "max_overflow": config.max_overflow,
            "pool_recycle": config.pool_recycle,
            "pool_pre_ping": True,
        })
        if config.ssl_mode:
            connect_args["sslmode"] = config.ssl_mode
            engine_kwargs["connect_args"] = connect_args
    else:
        # SQLite Settings for Dev
        connect_args["check_same_thread"] = False
        engine_kwargs["connect_args"] = connect_args

    engine_kwargs.update(overrides)
    return create_engine(config.url, **engine_kwargs)


def build_session_factory(config: DatabaseConfig, create_tables: bool = True) -> Optional[sessionmaker]:
    """Return a session factory, or None when no database URL is configured."""
    if not config.url:
        return None
    engine = build_engine(config)
    if create_tables:
        init_db(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    """Create missing tables (no-op for tables managed by Alembic already)."""
    # Import models so they register on Base.metadata
    from reelqueue.db import models  # noqa: F401

    Base.metadata.create_all(engine)
