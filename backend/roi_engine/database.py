# backend/roi_engine/database.py
"""
Engine and sessions for the ROI store.

Requests get a session from `get_db`. Work that must not share the
request transaction (snapshot invalidation, operator scripts) opens its own
through `session_scope`.
"""

import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool, QueuePool

from .config import settings

logger = logging.getLogger(__name__)


def _create_engine():
    """SQLite (tests) shares one in-memory connection; PostgreSQL gets a QueuePool."""
    if settings.is_sqlite:
        logger.info("Using in-memory SQLite store")
        return create_engine(
            settings.database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.debug,
        )

    logger.info(
        f"PostgreSQL pool: size={settings.db_pool_size} "
        f"overflow={settings.db_pool_max_overflow} recycle={settings.db_pool_recycle}s"
    )

    return create_engine(
        settings.database_url,
        poolclass=QueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_timeout=30,
        echo=settings.debug,
    )


engine = _create_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Request-scoped session; tests override this dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory: sessionmaker | None = None) -> Iterator[Session]:
    """
    Transactional scope for work outside a request (scripts, detached invalidation).

    Commits on success, rolls back on any exception and re-raises.

    Args:
        session_factory: Factory to open the session with (default: SessionLocal)
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()