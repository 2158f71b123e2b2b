"""
Engine and session lifecycle for the subscription subsystem.

One pooled engine per process, created lazily from DATABASE_URL. Routes get
a request-scoped session through get_db_session; the sweeper job and worker
iterate get_db_session_sync.
"""

import logging
import os
from typing import Generator, Optional

from fastapi import HTTPException, status
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


class DatabaseNotConfigured(RuntimeError):
    """DATABASE_URL is missing."""


def database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if not url:
        raise DatabaseNotConfigured("DATABASE_URL environment variable is not set")
    # Heroku-style URLs use the scheme SQLAlchemy 1.4+ rejects
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 1800,
    }


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        url = database_url()
        _engine = create_engine(url, **_engine_options(url))
        logger.info("Database engine created", extra={"dialect": _engine.dialect.name})
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(bind=get_engine(), autoflush=False)
    return _session_factory


def reset_engine() -> None:
    """Dispose the engine and forget the factory (tests, URL changes)."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def get_db_session() -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding one session per request.

    Answers 503 when the database is not configured.
    """
    try:
        factory = get_session_factory()
    except DatabaseNotConfigured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database not configured",
        )

    session = factory()
    try:
        yield session
    finally:
        session.close()


def get_db_session_sync() -> Generator[Session, None, None]:
    """Session generator for the sweeper job and worker."""
    session = get_session_factory()()
    try:
        yield session
    finally:
        session.close()
