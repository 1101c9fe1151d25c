"""Shared SQLAlchemy session/engine setup for Catalog Radar.

Usage patterns
--------------
- Import `SessionLocal` and `get_session` for app code / FastAPI deps.
- Pass a custom `sessionmaker` to `DatabaseQueue` / `ProductRepository` in
  tests; the module-level factory is only the process default.
- Configure the database URL via env var `CATALOG_DATABASE_URL` (preferred)
  or `DATABASE_URL`. Falls back to a local SQLite file for convenience.

Environment variables (optional)
--------------------------------
CATALOG_DB_POOL_SIZE (int, default 5)
CATALOG_DB_MAX_OVERFLOW (int, default 10)
CATALOG_DB_ECHO ("1" to enable SQL echo)
"""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from catalog.config import database_url

LOGGER = logging.getLogger(__name__)


def make_engine(url: str | None = None) -> Engine:
    """Create a SQLAlchemy engine with sensible defaults.

    - pool_pre_ping avoids stale connections
    - echo can be toggled via CATALOG_DB_ECHO
    - pool sizing via CATALOG_DB_POOL_SIZE / CATALOG_DB_MAX_OVERFLOW
    - SQLite connections may be shared across worker threads
    """
    url = url or database_url()

    pool_size = int(os.getenv("CATALOG_DB_POOL_SIZE", "5"))
    max_overflow = int(os.getenv("CATALOG_DB_MAX_OVERFLOW", "10"))
    echo = os.getenv("CATALOG_DB_ECHO", "0") == "1"

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,
            pool_size=pool_size,
            max_overflow=max_overflow,
        )
    return engine


# Module-level engine & session factory (engines connect lazily)
ENGINE: Engine = make_engine()
SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, autocommit=False, expire_on_commit=False)


@contextmanager
def get_session(factory: sessionmaker | None = None) -> Iterator[Session]:
    """Context manager that yields a DB session and ensures cleanup.

    Example:
        with get_session() as db:
            db.add(obj)
            db.commit()
    """
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        # Do not auto-commit; callers should commit explicitly
    finally:
        session.close()


def init_db(engine: Engine | None = None) -> None:
    """Create all tables on the given engine (default: the module engine)."""
    from catalog.db.models import Base

    engine = engine or ENGINE
    Base.metadata.create_all(bind=engine)
    LOGGER.info("init-db url=%s tables=%s", engine.url, sorted(Base.metadata.tables))


def current_engine_url() -> str:
    """Return the effective SQLAlchemy URL for debugging/logging."""
    return ENGINE.url.render_as_string(hide_password=True)


def test_connection(engine: Engine | None = None) -> bool:
    """Lightweight connectivity check. Returns True on success."""
    try:
        with (engine or ENGINE).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as exc:
        LOGGER.error("db connection check failed: %s", exc)
        return False


# pytest would otherwise collect this helper as a test.
test_connection.__test__ = False
