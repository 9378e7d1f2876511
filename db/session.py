"""
db/session.py

SQLAlchemy engine factory for the SQL table source.
"""

from __future__ import annotations

import logging

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from db.config import DatabaseSettings, get_database_settings

logger = logging.getLogger(__name__)


def create_db_engine(settings: DatabaseSettings | None = None) -> Engine:
    """
    Create an engine from *settings* (read from the environment when omitted).

    Pool sizing applies to server databases only; SQLite keeps the
    SQLAlchemy defaults.
    """

    settings = settings or get_database_settings()
    if settings.is_sqlite:
        return create_engine(settings.url, echo=settings.echo)

    return create_engine(
        settings.url,
        echo=settings.echo,
        pool_pre_ping=True,
        pool_recycle=settings.pool_recycle,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
    )


_engine: Engine | None = None


def get_engine() -> Engine:
    """Return the shared engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = create_db_engine()
        logger.info("Database engine created dialect=%s", _engine.dialect.name)
    return _engine


def dispose_engine() -> None:
    """Close pooled connections and forget the shared engine."""
    global _engine
    if _engine is not None:
        _engine.dispose()
        _engine = None
