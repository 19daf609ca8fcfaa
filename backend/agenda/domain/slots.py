"""
Slot generation for a single civil day.

Pure functions only: no database, no clock, no I/O. The same function feeds
the public availability listing and the booking validator, so a slot shown
to a customer is exactly a slot the validator will accept.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, NamedTuple, Optional, Sequence

from ..core.timezone_utils import civil_midnight_utc, civil_weekday, ensure_utc
from .schedule import AvailabilitySource


class Interval(NamedTuple):
    """Half-open UTC interval [start, end)."""

    start: datetime
    end: datetime


class Slot(NamedTuple):
    start: datetime
    end: datetime
    offset_minutes: int


def intervals_overlap(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open overlap: touching intervals do not overlap."""
    return start < other_end and end > other_start


def overlaps_any(start: datetime, end: datetime, intervals: Iterable[Interval]) -> bool:
    return any(intervals_overlap(start, end, other.start, other.end) for other in intervals)


def generate_slots(
    target_date: date,
    tz_name: str,
    source: AvailabilitySource,
    duration_minutes: int,
    booked: Sequence[Interval] = (),
) -> list[Slot]:
    """
    Bookable slots on ``target_date`` for a service of ``duration_minutes``.

    Candidates run from each window start to ``end - duration`` inclusive,
    stepped by the window's interval, and are dropped when they overlap any
    interval in ``booked``. The result is sorted by start with duplicates
    (from overlapping windows) removed.
    """
    if duration_minutes <= 0:
        raise ValueError("duration_minutes must be positive")

    day_start = civil_midnight_utc(target_date, tz_name)
    weekday = civil_weekday(target_date)
    booked_utc = [Interval(ensure_utc(b.start), ensure_utc(b.end)) for b in booked]

    seen: set[datetime] = set()
    slots: list[Slot] = []
    for window, interval in source.windows_for(target_date, weekday):
        if interval <= 0:
            raise ValueError("slot interval must be positive")
        last_offset = window.end_minute - duration_minutes
        offset = window.start_minute
        while offset <= last_offset:
            slot_start = day_start + timedelta(minutes=offset)
            slot_end = slot_start + timedelta(minutes=duration_minutes)
            if slot_start not in seen and not overlaps_any(slot_start, slot_end, booked_utc):
                seen.add(slot_start)
                slots.append(Slot(slot_start, slot_end, offset))
            offset += interval

    slots.sort(key=lambda s: s.start)
    return slots


def find_slot(slots: Sequence[Slot], start: datetime) -> Optional[Slot]:
    start_utc = ensure_utc(start)
    for slot in slots:
        if slot.start == start_utc:
            return slot
    return None
