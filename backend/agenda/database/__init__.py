"""
Engine, session factory and declarative Base for the agenda store.

PostgreSQL in production, SQLite for local runs and tests.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker

from agenda.core.config import settings

logger = logging.getLogger(__name__)


def _engine_options(db_url: str) -> dict[str, Any]:
    if db_url.startswith("sqlite"):
        # Celery threads and the API worker pool share the file
        return {"connect_args": {"check_same_thread": False}, "future": True}
    return {
        "pool_size": 5,
        "max_overflow": 5,
        "pool_timeout": 5,
        "pool_recycle": 300,
        "pool_pre_ping": True,
        "future": True,
    }


def create_app_engine(db_url: str) -> Engine:
    app_engine = create_engine(db_url, **_engine_options(db_url))
    if db_url.startswith("sqlite"):

        @event.listens_for(app_engine, "connect")
        def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
            # Schedule and override windows rely on ON DELETE CASCADE
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return app_engine


engine: Engine = create_app_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """One session per unit of work: commit on success, roll back on error."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


T = TypeVar("T")

# Lost Postgres connections and SQLite writer contention clear up on their own
_TRANSIENT_MARKERS = (
    "server closed the connection",
    "ssl connection has been closed unexpectedly",
    "database is locked",
)


def is_transient_error(exc: OperationalError) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def _backoff_seconds(attempt: int) -> float:
    return 0.1 * 2 ** (attempt - 1) + random.uniform(0, 0.05 * attempt)


def with_db_retry(op_name: str, func: Callable[[], T], *, max_attempts: int = 3) -> T:
    """
    Run ``func`` and retry it on transient OperationalErrors.

    Anything else, or the last failed attempt, propagates unchanged.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except OperationalError as exc:
            if attempt == max_attempts or not is_transient_error(exc):
                raise
            delay = _backoff_seconds(attempt)
            logger.warning(
                f"{op_name}: transient database error, retry {attempt}/{max_attempts - 1} "
                f"in {delay:.2f}s",
                extra={"event": "db_retry", "op": op_name, "attempt": attempt, "error": str(exc)},
            )
            time.sleep(delay)
    raise RuntimeError(f"{op_name}: max_attempts must be at least 1")


__all__ = [
    "Base",
    "SessionLocal",
    "create_app_engine",
    "engine",
    "get_db",
    "is_transient_error",
    "with_db_retry",
]
