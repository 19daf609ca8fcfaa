"""
Helpers for working with SQLAlchemy sessions in a dialect-agnostic way.
"""

from __future__ import annotations

from datetime import date
import zlib

from sqlalchemy import text
from sqlalchemy.orm import Session


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """
    Return SQLAlchemy dialect name without touching Session.bind directly.

    Falls back to ``default`` when the bound engine cannot be resolved.
    """
    try:
        bind = session.get_bind()
    except Exception:
        return default
    dialect = getattr(bind, "dialect", None)
    return getattr(dialect, "name", None) or default


def advisory_key_for_day(day: date) -> int:
    """Stable signed 32-bit key for pg_advisory_xact_lock."""
    raw = zlib.crc32(f"agenda:day:{day.isoformat()}".encode("utf-8"))
    return raw - (1 << 32) if raw >= (1 << 31) else raw


def take_day_advisory_lock(session: Session, day: date) -> bool:
    """
    Acquire a transaction-scoped advisory lock for ``day`` on PostgreSQL.

    Returns False on dialects without advisory locks.
    """
    if get_dialect_name(session) != "postgresql":
        return False
    session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": advisory_key_for_day(day)})
    return True
