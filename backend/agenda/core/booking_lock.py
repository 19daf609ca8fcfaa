"""
Per-civil-day booking locks.

Validation and insert of a booking must run as one unit against every other
writer touching the same civil day. Two layers:

- a process-local ``threading.Lock`` per day (always on), dropped from the
  registry once no caller holds or waits on it
- a Redis ``SET NX EX`` mutex per day when ``REDIS_URL`` is configured, so
  several API workers serialize as well

Redis failures fail open (logged), the process lock and the database-level
re-check still hold.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
import logging
import threading
import time
from typing import Dict, Iterable, Iterator, List, Optional

from redis import Redis

from agenda.core.config import settings
from agenda.core.exceptions import BookingConflictException
from agenda.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()


@dataclass
class _DayEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


# day -> lock plus the number of callers holding or waiting on it
_DAY_LOCKS: Dict[date, _DayEntry] = {}
_DAY_LOCKS_GUARD = threading.Lock()

_REDIS_POLL_SECONDS = 0.05


def _lock_key(day: date) -> str:
    return f"agenda:lock:day:{day.isoformat()}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if not settings.redis_url:
        return None
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            client.ping()
        except Exception as exc:
            logger.warning("day_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def _checkout(day: date) -> threading.Lock:
    """Lock for ``day``; the caller counts as a user until ``_checkin``."""
    with _DAY_LOCKS_GUARD:
        entry = _DAY_LOCKS.get(day)
        if entry is None:
            entry = _DayEntry()
            _DAY_LOCKS[day] = entry
        entry.users += 1
        return entry.lock


def _checkin(day: date) -> None:
    with _DAY_LOCKS_GUARD:
        entry = _DAY_LOCKS.get(day)
        if entry is None:
            return
        entry.users -= 1
        if entry.users <= 0:
            del _DAY_LOCKS[day]


def _acquire_redis(client: Redis, day: date, ttl_s: int, deadline: float) -> bool:
    """Poll SET NX until acquired or the deadline passes. Errors fail open."""
    while True:
        try:
            if client.set(_lock_key(day), str(time.time()), nx=True, ex=ttl_s):
                prometheus_metrics.record_booking_lock("acquire", "success")
                return True
        except Exception as exc:
            prometheus_metrics.record_booking_lock("acquire", "error")
            logger.warning(
                "day_lock_redis_acquire_failed",
                extra={
                    "day": day.isoformat(),
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return True
        if time.monotonic() >= deadline:
            prometheus_metrics.record_booking_lock("acquire", "blocked")
            return False
        time.sleep(_REDIS_POLL_SECONDS)


def _release_redis(client: Redis, day: date) -> None:
    try:
        deleted = client.delete(_lock_key(day))
        prometheus_metrics.record_booking_lock("release", "success" if deleted else "not_found")
    except Exception as exc:
        prometheus_metrics.record_booking_lock("release", "error")
        logger.warning(
            "day_lock_redis_release_failed",
            extra={
                "day": day.isoformat(),
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )


@contextmanager
def day_lock(
    days: Iterable[date],
    *,
    timeout_s: Optional[float] = None,
    ttl_s: Optional[int] = None,
) -> Iterator[List[date]]:
    """
    Hold the booking lock for every civil day in ``days``.

    Days are acquired in ascending order so overlapping multi-day requests
    cannot deadlock. Raises BookingConflictException when a lock cannot be
    obtained within ``timeout_s``.
    """
    ordered = sorted(set(days))
    timeout = settings.booking_lock_timeout_seconds if timeout_s is None else timeout_s
    ttl = settings.booking_lock_ttl_seconds if ttl_s is None else ttl_s
    deadline = time.monotonic() + timeout
    client = _get_sync_redis()

    checked_out: List[date] = []
    held_local: List[threading.Lock] = []
    held_redis: List[date] = []
    try:
        for day in ordered:
            lock = _checkout(day)
            checked_out.append(day)
            remaining = max(0.0, deadline - time.monotonic())
            if not lock.acquire(timeout=remaining):
                prometheus_metrics.record_booking_lock("acquire", "timeout")
                logger.warning("day_lock_timeout", extra={"day": day.isoformat()})
                raise BookingConflictException(
                    "The calendar is busy, please try again",
                    details={"day": day.isoformat()},
                )
            held_local.append(lock)

            if client is not None:
                if not _acquire_redis(client, day, ttl, deadline):
                    logger.warning("day_lock_redis_timeout", extra={"day": day.isoformat()})
                    raise BookingConflictException(
                        "The calendar is busy, please try again",
                        details={"day": day.isoformat()},
                    )
                held_redis.append(day)
        yield ordered
    finally:
        for day in reversed(held_redis):
            if client is not None:
                _release_redis(client, day)
        for lock in reversed(held_local):
            lock.release()
        for day in checked_out:
            _checkin(day)
