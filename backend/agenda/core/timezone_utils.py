"""
Timezone utilities for the Agenda platform.

All instants are stored in UTC. The business calendar (schedules, blocked
dates, slot labels) is expressed in the configured IANA timezone.
"""

from datetime import date, datetime, timedelta
from typing import Optional

import pytz

from .config import settings


def get_business_timezone(name: Optional[str] = None) -> pytz.BaseTzInfo:
    """Return the pytz timezone for the business calendar (or an explicit name)."""
    return pytz.timezone(name or settings.timezone)


def ensure_utc(dt: datetime) -> datetime:
    """Return an aware UTC datetime, treating naive values as UTC."""
    if dt.tzinfo is None:
        return pytz.UTC.localize(dt)
    return dt.astimezone(pytz.UTC)


def civil_midnight_utc(target_date: date, tz_name: Optional[str] = None) -> datetime:
    """
    UTC instant of 00:00 local time on ``target_date``.

    On days where midnight does not exist (DST spring-forward at 00:00) pytz
    resolves to the first valid local instant with ``is_dst=False``.
    """
    tz = get_business_timezone(tz_name)
    naive = datetime(target_date.year, target_date.month, target_date.day)
    try:
        local = tz.localize(naive, is_dst=None)
    except (pytz.NonExistentTimeError, pytz.AmbiguousTimeError):
        local = tz.normalize(tz.localize(naive, is_dst=False))
    return local.astimezone(pytz.UTC)


def civil_date_of(instant: datetime, tz_name: Optional[str] = None) -> date:
    """Civil date of an instant as observed in the business timezone."""
    return ensure_utc(instant).astimezone(get_business_timezone(tz_name)).date()


def civil_weekday(target_date: date) -> int:
    """Weekday index with Sunday = 0 ... Saturday = 6."""
    return target_date.isoweekday() % 7


def civil_days_spanned(start: datetime, end: datetime, tz_name: Optional[str] = None) -> list[date]:
    """Every civil date touched by ``[start, end)``."""
    first = civil_date_of(start, tz_name)
    last = civil_date_of(end - timedelta(microseconds=1), tz_name) if end > start else first
    days = []
    current = first
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days


def format_local_time(instant: datetime, tz_name: Optional[str] = None) -> str:
    """HH:MM label in the business timezone."""
    return ensure_utc(instant).astimezone(get_business_timezone(tz_name)).strftime("%H:%M")


def format_local_date(instant: datetime, tz_name: Optional[str] = None) -> str:
    """dd/mm/YYYY label in the business timezone."""
    return ensure_utc(instant).astimezone(get_business_timezone(tz_name)).strftime("%d/%m/%Y")


def utc_now() -> datetime:
    return datetime.now(pytz.UTC)