"""
Momentum Database Session Management.

Single entry point for DB initialisation plus the commit/rollback context
manager every service uses.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.orm import Session, sessionmaker

from momentum.db.base import Base, engine_registry

ENGINE_NAME = "momentum"


def init_db(
    db_url: str,
    create_tables: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
) -> sessionmaker:
    """
    Register the "momentum" engine and return its session factory.

    All callers (runtime boot, ``momentum init-db``, tests) go through here.

    Args:
        db_url:        SQLAlchemy URL (postgresql://… or sqlite://).
        create_tables: Run ``Base.metadata.create_all()`` — dev, CLI and tests.
    """
    # Importing the models registers their tables on Base.metadata
    import momentum.db.models  # noqa: F401

    engine = engine_registry.register(
        ENGINE_NAME, db_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
    )
    if create_tables:
        Base.metadata.create_all(engine)
    return engine_registry.get_session_factory(ENGINE_NAME)


@contextmanager
def session_scope(factory: sessionmaker) -> Generator[Session, None, None]:
    """
    Session with auto-commit on success and rollback on error.

    Usage:
        with session_scope(factory) as session:
            task = session.get(Task, task_id)
    """
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_all_sessions(factory: Optional[sessionmaker] = None) -> None:
    """Dispose all engines. Used during shutdown."""
    engine_registry.dispose_all()
