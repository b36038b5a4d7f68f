"""Engine, session factory and transactional scope for the incident store."""

from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Generator

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from slack_incident_engine.config import get_settings

Base = declarative_base()

# Seconds a SQLite writer waits for the lock held by another declaration.
SQLITE_LOCK_TIMEOUT = 15

logger = structlog.get_logger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    # Organization deletes cascade to counters, incidents and users only when enforced.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@lru_cache()
def get_engine() -> Engine:
    """Return the process-wide engine for ``DATABASE_URL``.

    Request threads and job workers share this engine, so server connections
    are checked before use. SQLite enforces foreign keys and waits on the
    write lock instead of failing while another counter increment is pending.
    """

    url = get_settings().database_url
    if url.startswith("sqlite"):
        engine = create_engine(url, future=True, connect_args={"timeout": SQLITE_LOCK_TIMEOUT})
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_engine(url, future=True, pool_pre_ping=True)


@lru_cache()
def get_session_factory() -> sessionmaker[Session]:
    """Sessions keep attributes loaded after commit; follow-up jobs read ids from them."""

    return sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False, future=True)


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Run one unit of work: commit on success, roll back and re-raise on error."""

    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.warning("db_transaction_rolled_back", error_type=type(exc).__name__)
        raise
    finally:
        session.close()
