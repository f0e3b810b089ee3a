"""
Database session management for LeagueRank.

Provides the SQLAlchemy engine and session factory with connection
pooling configured from config.py.

Usage:
    # As a context manager (recommended for scripts and jobs)
    from leaguerank.db import get_session

    with get_session() as session:
        seasons = session.query(Season).all()
        # Commits automatically on exit, rolls back on exception

    # As a dependency injection (for FastAPI)
    from leaguerank.db.session import get_db
"""

from contextlib import contextmanager
from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from leaguerank.config import settings


def get_engine(database_url: str | None = None) -> Engine:
    """
    Create SQLAlchemy engine with connection pooling.

    The engine is configured with:
    - Connection pool for efficient reuse (server databases only)
    - Echo mode only when LOG_LEVEL=DEBUG
    - Pre-ping to verify connections before use (handles stale connections)
    """
    url = database_url or settings.database_url
    kwargs: dict = {
        "pool_pre_ping": True,
        "echo": settings.log_level == "DEBUG",
    }
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = settings.db_pool_size
        kwargs["max_overflow"] = settings.db_max_overflow
    return create_engine(url, **kwargs)


@lru_cache
def _get_engine() -> Engine:
    """Get or create the process-wide engine instance."""
    return get_engine()


@lru_cache
def get_session_factory() -> sessionmaker:
    """
    Session factory bound to the process-wide engine.

    The rankings job opens several short sessions per run (tracker writes,
    loading, persisting), so it is handed the factory rather than a session.
    """
    return sessionmaker(
        autocommit=False,  # We'll handle commits explicitly
        autoflush=False,  # Don't auto-flush before queries (more control)
        bind=_get_engine(),
    )


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Automatically commits on successful exit, rolls back on exception.

    Raises:
        Any exception from the database operation (after rollback)
    """
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """
    Dependency injection function for FastAPI.

    Example:
        @router.get("/rankings")
        def leaderboard(db: Session = Depends(get_db)):
            return db.query(PlayerRanking).all()
    """
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
