"""
Engine and session management.

Uses CARECONNECT_DB_URL / DATABASE_URL (PostgreSQL in production); otherwise
SQLite at CARECONNECT_DB_PATH. Every write path runs inside session_scope(),
which commits on success and rolls back on any exception.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from backend_careconnect.care_logging import get_logger
from backend_careconnect.config.env import get_database_url, mask_database_url
from backend_careconnect.config.settings import get_settings
from backend_careconnect.database import append_only
from backend_careconnect.database.models import Base
from backend_careconnect.database.repositories import get_or_create_platform_wallet

logger = get_logger(__name__)

_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine() -> Engine:
    """Create or return cached engine."""
    global _engine
    if _engine is None:
        url = get_database_url()
        connect_args = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        _engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        if url.startswith("sqlite"):
            event.listen(_engine, "connect", _enable_sqlite_foreign_keys)
        logger.info("careconnect_engine", url=mask_database_url(url))
    return _engine


def _get_session_factory() -> sessionmaker:
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=get_engine())
    return _SessionLocal


@contextmanager
def session_scope() -> Iterator[Session]:
    """Context manager for a single session. Commits on success, rolls back on error."""
    factory = _get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db() -> None:
    """
    Create all tables (and the append-only triggers) if they do not exist and
    seed the platform wallet for the configured currency.
    Safe to call on every startup.
    """
    append_only.install()
    engine = get_engine()
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("careconnect_init_db", url=mask_database_url(get_database_url()))
    except Exception as e:
        logger.exception("careconnect_init_db_failed", error=str(e))
        raise

    currency = get_settings().currency
    with session_scope() as session:
        wallet = get_or_create_platform_wallet(session, currency)
        logger.info("careconnect_platform_wallet_ready", wallet_id=wallet.id, currency=currency)


def reset_engine_for_test() -> None:
    """Dispose and forget the cached engine so the next call reads the environment again."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
