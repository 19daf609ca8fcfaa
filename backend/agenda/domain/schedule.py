"""
Schedule value types shared by the slot generator, services and schemas.

Minutes are local civil offsets from midnight in the business timezone.
Weekday 0 is Sunday.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, NamedTuple, Optional, Protocol, Sequence

MINUTES_PER_DAY = 1440
WEEKDAYS = tuple(range(7))
DEFAULT_OPEN_WEEKDAYS = (1, 2, 3, 4, 5, 6)  # Monday-Saturday


class TimeWindow(NamedTuple):
    start_minute: int
    end_minute: int


class SlotWindow(NamedTuple):
    """A window plus the grid step used to place candidates inside it."""

    window: TimeWindow
    interval_minutes: int


def validate_window(window: TimeWindow) -> None:
    if not (0 <= window.start_minute < window.end_minute <= MINUTES_PER_DAY):
        raise ValueError(
            f"Invalid time window {window.start_minute}-{window.end_minute}: "
            f"expected 0 <= start < end <= {MINUTES_PER_DAY}"
        )


def validate_day_windows(windows: Iterable[TimeWindow]) -> list[TimeWindow]:
    """Return windows sorted by start; raise ValueError on bad bounds or overlap."""
    ordered = sorted(windows)
    previous: Optional[TimeWindow] = None
    for window in ordered:
        validate_window(window)
        if previous is not None and window.start_minute < previous.end_minute:
            raise ValueError(
                f"Time windows overlap: {previous.start_minute}-{previous.end_minute} "
                f"and {window.start_minute}-{window.end_minute}"
            )
        previous = window
    return ordered


@dataclass(frozen=True)
class DaySchedule:
    weekday: int
    is_available: bool
    time_windows: tuple[TimeWindow, ...] = ()

    def __post_init__(self) -> None:
        if self.weekday not in WEEKDAYS:
            raise ValueError(f"weekday must be in 0..6, got {self.weekday}")
        if not self.is_available and self.time_windows:
            raise ValueError("An unavailable day cannot have time windows")
        object.__setattr__(self, "time_windows", tuple(validate_day_windows(self.time_windows)))

    @classmethod
    def closed(cls, weekday: int) -> "DaySchedule":
        return cls(weekday=weekday, is_available=False)


@dataclass(frozen=True)
class WeekSchedule:
    """Exactly one DaySchedule per weekday."""

    days: tuple[DaySchedule, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        weekdays = sorted(day.weekday for day in self.days)
        if weekdays != list(WEEKDAYS):
            raise ValueError("A week schedule needs exactly one entry for each weekday 0..6")
        object.__setattr__(self, "days", tuple(sorted(self.days, key=lambda d: d.weekday)))

    def for_weekday(self, weekday: int) -> DaySchedule:
        return self.days[weekday]

    @property
    def has_availability(self) -> bool:
        return any(day.is_available and day.time_windows for day in self.days)

    @classmethod
    def from_days(cls, days: Iterable[DaySchedule]) -> "WeekSchedule":
        """Fill in missing weekdays as closed."""
        by_weekday = {day.weekday: day for day in days}
        return cls(tuple(by_weekday.get(w, DaySchedule.closed(w)) for w in WEEKDAYS))

    @classmethod
    def closed(cls) -> "WeekSchedule":
        return cls(tuple(DaySchedule.closed(w) for w in WEEKDAYS))


def default_week_schedule(
    start_minute: int,
    end_minute: int,
    open_weekdays: Sequence[int] = DEFAULT_OPEN_WEEKDAYS,
) -> WeekSchedule:
    """Business hours used when nothing has been configured."""
    window = TimeWindow(start_minute, end_minute)
    return WeekSchedule.from_days(
        DaySchedule(weekday=w, is_available=True, time_windows=(window,)) for w in open_weekdays
    )


class LegacyRule(NamedTuple):
    weekday: int
    start_minute: int
    end_minute: int
    slot_interval_minutes: int
    is_active: bool = True


def merge_schedule(
    service_schedule: Optional[WeekSchedule], global_schedule: WeekSchedule
) -> WeekSchedule:
    """A service-specific schedule wins when it has any availability."""
    if service_schedule is not None and service_schedule.has_availability:
        return service_schedule
    return global_schedule


class AvailabilitySource(Protocol):
    """Anything that can say which windows are open on a civil date."""

    def windows_for(self, target_date: date, weekday: int) -> Sequence[SlotWindow]:
        ...


class WeeklyScheduleSource:
    def __init__(self, schedule: WeekSchedule, interval_minutes: int):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.schedule = schedule
        self.interval_minutes = interval_minutes

    def windows_for(self, target_date: date, weekday: int) -> Sequence[SlotWindow]:
        day = self.schedule.for_weekday(weekday)
        if not day.is_available:
            return []
        return [SlotWindow(window, self.interval_minutes) for window in day.time_windows]

    def __repr__(self) -> str:
        return f"WeeklyScheduleSource(interval={self.interval_minutes})"


class LegacyRuleSource:
    """Active rules for the weekday, each with its own interval."""

    def __init__(self, rules: Iterable[LegacyRule]):
        self.rules = [rule for rule in rules if rule.is_active]

    def windows_for(self, target_date: date, weekday: int) -> Sequence[SlotWindow]:
        return [
            SlotWindow(TimeWindow(rule.start_minute, rule.end_minute), rule.slot_interval_minutes)
            for rule in self.rules
            if rule.weekday == weekday
        ]

    def __repr__(self) -> str:
        return f"LegacyRuleSource(rules={len(self.rules)})"


class OverrideSource:
    """Explicit windows for one civil date; an empty list means closed."""

    def __init__(self, override_date: date, windows: Iterable[TimeWindow], interval_minutes: int):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.override_date = override_date
        self.windows = validate_day_windows(windows)
        self.interval_minutes = interval_minutes

    def windows_for(self, target_date: date, weekday: int) -> Sequence[SlotWindow]:
        if target_date != self.override_date:
            return []
        return [SlotWindow(window, self.interval_minutes) for window in self.windows]

    def __repr__(self) -> str:
        return f"OverrideSource({self.override_date.isoformat()}, windows={len(self.windows)})"
