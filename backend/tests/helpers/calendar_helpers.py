"""Calendar helpers shared by service and route tests."""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytz

from agenda.domain.schedule import DaySchedule, TimeWindow, WeekSchedule
from agenda.models.appointment import Appointment
from agenda.repositories.schedule_repository import ScheduleRepository

TZ = "America/Sao_Paulo"

# 2030-01-08 is a Tuesday; far enough ahead that "now" never catches up
TUESDAY = date(2030, 1, 8)
WEDNESDAY = date(2030, 1, 9)
SUNDAY = date(2030, 1, 6)


def local(day: date, hour: int, minute: int = 0, tz_name: str = TZ) -> datetime:
    """UTC instant of a local wall-clock time on ``day``."""
    tz = pytz.timezone(tz_name)
    return tz.localize(datetime(day.year, day.month, day.day, hour, minute)).astimezone(pytz.UTC)


def week_with(windows_by_weekday: dict) -> WeekSchedule:
    """Week where listed weekdays are open with the given (start, end) minute pairs."""
    return WeekSchedule.from_days(
        DaySchedule(
            weekday=weekday,
            is_available=True,
            time_windows=tuple(TimeWindow(start, end) for start, end in windows),
        )
        for weekday, windows in windows_by_weekday.items()
    )


def save_week(db, windows_by_weekday: dict, service_id=None) -> WeekSchedule:
    schedule = week_with(windows_by_weekday)
    ScheduleRepository(db).replace_week_schedule(schedule, service_id)
    db.commit()
    return schedule


def insert_appointment(
    db,
    start_at: datetime,
    minutes: int,
    *,
    status: str = "BOOKED",
    service_id: str = "cut",
    customer_phone: str = "5511999990000",
    batch_id=None,
) -> Appointment:
    """Write an appointment row directly, bypassing validation."""
    appointment = Appointment(
        service_id=service_id,
        service_name=service_id.title(),
        service_duration_min=minutes,
        service_price=Decimal("50.00"),
        start_at=start_at,
        end_at=start_at + timedelta(minutes=minutes),
        status=status,
        customer_name="Maria Silva",
        customer_phone=customer_phone,
        batch_id=batch_id,
    )
    db.add(appointment)
    db.commit()
    return appointment
