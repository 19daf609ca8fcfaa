# backend/agenda/api/dependencies/database.py
"""
Request-scoped database session.

Tests swap this dependency for their own SQLite session through
``app.dependency_overrides``.
"""

from typing import Generator

from sqlalchemy.orm import Session

from ...database import get_db as _pooled_session


def get_db() -> Generator[Session, None, None]:
    """Session for one request; committed on success, rolled back on error, always closed."""
    yield from _pooled_session()
